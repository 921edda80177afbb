# processors/streaming_audio.py

import asyncio
import logging
from typing import AsyncIterator, Optional

from processors.errors import PermissionDenied

logger = logging.getLogger(__name__)


class StreamingMicrophone:
    """A microphone living in the learner's browser.

    The browser asks for microphone permission itself and reports the outcome; the
    recording websocket then pushes audio frames in with ``feed()``. Frames arriving
    while the device is not held are dropped.
    """

    def __init__(self, mimetype: str = "audio/webm"):
        self.mimetype = mimetype
        self.permission: Optional[bool] = None
        self.acquired_count = 0
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    def grant(self, granted: bool) -> None:
        self.permission = granted

    async def acquire(self) -> None:
        if not self.permission:
            raise PermissionDenied("The browser did not grant microphone access.")
        self._queue = asyncio.Queue()
        self._held = True
        self.acquired_count += 1

    def feed(self, chunk: bytes) -> None:
        if not self._held:
            logger.debug(f"Dropped {len(chunk)} bytes received outside a recording.")
            return
        self._queue.put_nowait(chunk)

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                break
            yield chunk

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self.acquired_count -= 1
        self._queue.put_nowait(None)
