"""Microphone capture for speaking challenges.

``AudioCapture`` owns the microphone while recording and is the only thing that
acquires or releases it::

    IDLE --start()--> ACQUIRING --> RECORDING --stop()--> STOPPED(payload)
    RECORDING --time limit--> STOPPED(payload)
    RECORDING --device error--> IDLE (stop() then raises CaptureFailed)
    STOPPED --discard()--> IDLE
    STOPPED --analyze()--> ANALYZING --> RESULT

The device is released on every way out of ``RECORDING``: ``stop()``,
``discard()``, the time limit, a capture error, and ``aclose()``.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol, TypeVar

from processors.errors import CaptureFailed, ContractViolation, PermissionDenied

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MicrophoneDevice(Protocol):
    mimetype: str

    async def acquire(self) -> None:
        """Asks for the microphone. Raises ``PermissionDenied`` when refused."""

    def chunks(self) -> AsyncIterator[bytes]:
        """Yields raw audio while the device is held."""

    def release(self) -> None:
        """Gives the microphone back. Must be safe to call more than once."""


class AudioCaptureState(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RECORDING = "recording"
    STOPPED = "stopped"
    ANALYZING = "analyzing"
    RESULT = "result"


class AudioCapture:
    def __init__(self, device: MicrophoneDevice, max_duration: float = 30.0):
        self.device = device
        self.max_duration = max_duration
        self.state = AudioCaptureState.IDLE
        self.payload: Optional[bytes] = None
        self.result: Any = None
        self.limit_reached = False
        self._chunks: list[bytes] = []
        self._reader: Optional[asyncio.Task] = None
        self._holding_device = False
        self._failure: Optional[Exception] = None

    @property
    def mimetype(self) -> str:
        return getattr(self.device, "mimetype", "audio/webm")

    @property
    def is_recording(self) -> bool:
        """True from the moment the device is requested until the recording ends."""
        return self.state in (AudioCaptureState.ACQUIRING, AudioCaptureState.RECORDING)

    async def start(self) -> None:
        if self.is_recording:
            logger.debug(f"start() ignored, already {self.state.value}.")
            return
        if self.state is AudioCaptureState.RESULT:
            self._clear()
        if self.state is not AudioCaptureState.IDLE:
            raise ContractViolation(f"Cannot start recording while {self.state.value}; discard the recording first.")

        self._failure = None
        self.state = AudioCaptureState.ACQUIRING
        try:
            await self.device.acquire()
        except PermissionDenied:
            logger.warning("Microphone permission denied.")
            self._clear()
            raise
        except BaseException:
            self._clear()
            raise
        if self.state is not AudioCaptureState.ACQUIRING:
            # Discarded or closed while the device was being requested.
            self.device.release()
            logger.debug("Microphone released, capture was cancelled during acquisition.")
            return

        self._holding_device = True
        self._chunks = []
        self.limit_reached = False
        self.state = AudioCaptureState.RECORDING
        self._reader = asyncio.create_task(self._collect())
        logger.info("Recording started.")

    async def _collect(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration
        try:
            async for chunk in self.device.chunks():
                if chunk:
                    self._chunks.append(chunk)
                if loop.time() >= deadline:
                    self.limit_reached = True
                    logger.info(f"Recording reached the {self.max_duration}s limit.")
                    break
        except Exception as e:
            logger.error(f"Recording failed: {e}")
            self._release()
            self._clear()
            self._failure = e
            return

        if self.state is AudioCaptureState.RECORDING and self.limit_reached:
            self._release()
            self._finish_recording()

    async def _stop_reader(self) -> Optional[BaseException]:
        reader, self._reader = self._reader, None
        if reader is None or reader is asyncio.current_task():
            return None
        if not reader.done():
            reader.cancel()
        try:
            await reader
        except asyncio.CancelledError:
            return None
        except Exception as e:
            return e
        return None

    def _release(self) -> None:
        if self._holding_device:
            self._holding_device = False
            self.device.release()
            logger.debug("Microphone released.")

    def _finish_recording(self) -> bytes:
        self.payload = b"".join(self._chunks)
        self._chunks = []
        self.state = AudioCaptureState.STOPPED
        logger.info(f"Recording stopped with {len(self.payload)} bytes.")
        return self.payload

    async def stop(self) -> bytes:
        """Ends the recording and returns the captured audio.

        A recording that already ended at the time limit returns its payload. One
        that failed raises ``CaptureFailed``, once.
        """
        if self._failure is not None and self.state is AudioCaptureState.IDLE:
            failure, self._failure = self._failure, None
            raise CaptureFailed(str(failure)) from failure
        if self.state is AudioCaptureState.STOPPED and self.limit_reached:
            return self.payload
        if self.state is not AudioCaptureState.RECORDING:
            raise ContractViolation(f"Cannot stop recording while {self.state.value}.")
        try:
            error = await self._stop_reader()
        finally:
            self._release()

        if error is not None:
            self._clear()
            logger.error(f"Recording failed: {error}")
            raise CaptureFailed(str(error)) from error
        return self._finish_recording()

    async def discard(self) -> None:
        """Drops the recording, whatever state it is in."""
        if self.state is AudioCaptureState.ANALYZING:
            raise ContractViolation("Cannot discard a recording that is being analyzed.")
        try:
            await self._stop_reader()
        finally:
            self._release()
            self._clear()
            self._failure = None

    async def analyze(self, evaluate: Callable[[bytes], Awaitable[T]]) -> T:
        """Hands the stopped recording to ``evaluate`` and keeps its result."""
        if self.state is not AudioCaptureState.STOPPED or self.payload is None:
            raise ContractViolation(f"Nothing to analyze while {self.state.value}.")
        self.state = AudioCaptureState.ANALYZING
        try:
            result = await evaluate(self.payload)
        except BaseException:
            if self.state is AudioCaptureState.ANALYZING:
                self.state = AudioCaptureState.STOPPED
            raise
        if self.state is AudioCaptureState.ANALYZING:
            self.result = result
            self.state = AudioCaptureState.RESULT
        return result

    @asynccontextmanager
    async def recording(self) -> AsyncIterator["AudioCapture"]:
        """Records for the duration of the block; the device is released on exit."""
        await self.start()
        try:
            yield self
        finally:
            if self.state is AudioCaptureState.RECORDING or self._failure is not None:
                await self.stop()

    async def aclose(self) -> None:
        """Force-releases the microphone and forgets everything captured."""
        try:
            await self._stop_reader()
        finally:
            self._release()
            self._clear()
            self._failure = None

    def _clear(self) -> None:
        self.state = AudioCaptureState.IDLE
        self.payload = None
        self.result = None
        self.limit_reached = False
        self._chunks = []
