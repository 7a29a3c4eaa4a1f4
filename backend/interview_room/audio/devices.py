from __future__ import annotations

import asyncio
import itertools
import logging
from typing import AsyncIterator, Callable, Optional, Protocol

from interview_room.core import config
from interview_room.errors import DeviceError, PermissionDenied

logger = logging.getLogger("audio_devices")

_PERMISSION_MARKERS = ("permission", "not authorized", "not permitted", "access denied")
_handle_ids = itertools.count(1)


class MicrophoneHandle:
    """
    One acquired capture stream.

    Captured blocks are queued for the upstream transport; while muted the
    capture keeps running but blocks are dropped instead of queued.
    """

    def __init__(self, max_queued_chunks: int = 50):
        self.handle_id = next(_handle_ids)
        self.muted = False
        self.released = False
        self._stream = None
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=max(1, max_queued_chunks))

    def push(self, chunk: bytes) -> None:
        if self.muted or self.released or not chunk:
            return
        if self._queue.full():
            # Oldest audio is the least useful to a realtime agent.
            self._queue.get_nowait()
        self._queue.put_nowait(chunk)

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    def _mark_released(self) -> None:
        self.released = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __repr__(self) -> str:
        return f"MicrophoneHandle(id={self.handle_id}, muted={self.muted}, released={self.released})"


class AudioDeviceManager(Protocol):
    async def acquire(self) -> MicrophoneHandle:
        ...

    def set_muted(self, handle: MicrophoneHandle, muted: bool) -> None:
        ...

    async def release(self, handle: MicrophoneHandle) -> None:
        ...


def _translate_portaudio_error(exc: Exception) -> Exception:
    text = str(exc or "").lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PermissionDenied(f"microphone permission denied: {exc}")
    return DeviceError(f"microphone unavailable: {exc}")


class _BaseAudioManager:
    def __init__(self):
        self._active: Optional[MicrophoneHandle] = None
        self._opening = False

    def _ensure_free(self) -> None:
        if self._active is not None and not self._active.released:
            raise DeviceError(f"microphone already held by handle {self._active.handle_id}")
        if self._opening:
            raise DeviceError("microphone request already in progress")

    def set_muted(self, handle: MicrophoneHandle, muted: bool) -> None:
        muted = bool(muted)
        if handle.muted == muted:
            return
        handle.muted = muted
        logger.info("microphone %s | handle=%s", "muted" if muted else "unmuted", handle.handle_id)


class SoundDeviceAudioManager(_BaseAudioManager):
    """Default input device through PortAudio (`sounddevice`)."""

    def __init__(
        self,
        sample_rate: int = 16000,
        block_ms: int = 100,
        device: int | str | None = None,
    ):
        super().__init__()
        self._sample_rate = sample_rate
        self._blocksize = max(1, int((sample_rate * block_ms) / 1000))
        self._device = device

    def _open_stream(self, callback: Callable):
        try:
            import sounddevice as sd  # type: ignore[import-untyped]
        except (ImportError, OSError) as exc:
            raise DeviceError(f"audio backend unavailable: {exc}") from exc

        try:
            stream = sd.RawInputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="int16",
                blocksize=self._blocksize,
                device=self._device,
                callback=callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise _translate_portaudio_error(exc) from exc
        except ValueError as exc:
            raise DeviceError(f"invalid input device {self._device!r}: {exc}") from exc
        return stream

    async def acquire(self) -> MicrophoneHandle:
        self._ensure_free()
        loop = asyncio.get_running_loop()
        handle = MicrophoneHandle()

        def _on_block(indata, frames, time_info, status):
            if status:
                logger.debug("input status | handle=%s status=%s", handle.handle_id, status)
            loop.call_soon_threadsafe(handle.push, bytes(indata))

        # Opening the stream may block on an OS permission prompt; the slot is
        # reserved until it returns.
        self._opening = True
        try:
            handle._stream = await asyncio.to_thread(self._open_stream, _on_block)
        finally:
            self._opening = False
        self._active = handle
        logger.info(
            "microphone acquired | handle=%s sample_rate=%s blocksize=%s",
            handle.handle_id,
            self._sample_rate,
            self._blocksize,
        )
        return handle

    async def release(self, handle: MicrophoneHandle) -> None:
        if handle.released:
            return
        handle._mark_released()
        if self._active is handle:
            self._active = None
        stream = handle._stream
        handle._stream = None
        if stream is None:
            return
        try:
            await asyncio.to_thread(_stop_stream, stream)
            logger.info("microphone released | handle=%s", handle.handle_id)
        except Exception as exc:
            logger.warning("microphone release failed | handle=%s err=%s", handle.handle_id, exc)


def _stop_stream(stream) -> None:
    try:
        stream.stop()
    finally:
        stream.close()


class NullAudioManager(_BaseAudioManager):
    """Hands out capture-less handles; text-only sessions and QA runs."""

    async def acquire(self) -> MicrophoneHandle:
        self._ensure_free()
        handle = MicrophoneHandle()
        self._active = handle
        return handle

    async def release(self, handle: MicrophoneHandle) -> None:
        if handle.released:
            return
        handle._mark_released()
        if self._active is handle:
            self._active = None


def build_audio_manager() -> AudioDeviceManager:
    if config.QA_MODE or not config.AUDIO_ENABLED:
        return NullAudioManager()

    device: int | str | None = config.AUDIO_DEVICE
    if isinstance(device, str) and device.isdigit():
        device = int(device)
    return SoundDeviceAudioManager(
        sample_rate=config.AUDIO_SAMPLE_RATE,
        block_ms=config.AUDIO_BLOCK_MS,
        device=device,
    )
