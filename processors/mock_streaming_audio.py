# processors/mock_streaming_audio.py

import asyncio
import logging
from typing import AsyncIterator, Optional

from processors.errors import PermissionDenied

logger = logging.getLogger(__name__)


class MockMicrophone:
    """Synthetic microphone for dev mode and tests.

    Produces ``chunk`` every ``interval`` seconds. ``deny_permission`` makes
    ``acquire()`` fail; ``fail_after`` makes the stream raise ``OSError`` after that
    many chunks, simulating a device that disappears mid-recording.
    """

    def __init__(
        self,
        chunk: bytes = b"\x00\x01" * 160,
        interval: float = 0.01,
        *,
        deny_permission: bool = False,
        fail_after: Optional[int] = None,
        mimetype: str = "audio/webm",
    ):
        self.chunk = chunk
        self.interval = interval
        self.deny_permission = deny_permission
        self.fail_after = fail_after
        self.mimetype = mimetype
        self.acquired_count = 0
        self.release_calls = 0
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    async def acquire(self) -> None:
        await asyncio.sleep(0)
        if self.deny_permission:
            raise PermissionDenied("Mock microphone permission denied.")
        self._held = True
        self.acquired_count += 1

    async def chunks(self) -> AsyncIterator[bytes]:
        produced = 0
        while self._held:
            if self.fail_after is not None and produced >= self.fail_after:
                raise OSError("Mock microphone disconnected.")
            yield self.chunk
            produced += 1
            await asyncio.sleep(self.interval)

    def release(self) -> None:
        self.release_calls += 1
        if self._held:
            self._held = False
            self.acquired_count -= 1
