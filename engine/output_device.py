from __future__ import annotations

import threading
from typing import Optional

from engine.errors import DeviceUnavailableError
from engine.pcm import frame_bytes
from log.log_manager import LogManager

SUPPORTED_SAMPLE_FORMATS = ("int16",)


class OutputSession:
    """One open PortAudio stream rendering a prepared int16 buffer.

    The stream callback pulls bytes from the buffer starting at the feed
    offset. Pausing stops the stream without moving the read offset.
    """

    def __init__(self, stream_factory, *, sample_rate: int, channels: int, log: LogManager) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self._frame_bytes = frame_bytes(self.channels)
        self._stream_factory = stream_factory
        self._log = log

        self._lock = threading.Lock()
        self._buffer: Optional[memoryview] = None
        self._offset = 0
        self._stream = None
        self._paused = False
        self._closed = False

    @property
    def bytes_fed(self) -> int:
        with self._lock:
            return self._offset

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def closed(self) -> bool:
        return self._closed

    def _callback(self, outdata, frames, time_info, status) -> None:
        want = int(frames) * self._frame_bytes
        with self._lock:
            buf = self._buffer
            off = self._offset
            if buf is None or self._paused:
                outdata[:want] = b"\x00" * want
                return
            chunk = buf[off:off + want]
            n = len(chunk)
            outdata[:n] = chunk
            if n < want:
                outdata[n:want] = b"\x00" * (want - n)
            self._offset = off + n

    def feed(self, buffer: bytes, start_offset: int = 0, *, paused: bool = False) -> None:
        if self._closed:
            raise DeviceUnavailableError("output session is closed")
        start = max(0, int(start_offset))
        start -= start % self._frame_bytes
        with self._lock:
            self._buffer = memoryview(buffer)
            self._offset = min(start, len(buffer))
            self._paused = bool(paused)
        try:
            self._stream = self._stream_factory(self._callback)
            if not paused:
                self._stream.start()
        except Exception as e:
            self._stream = None
            self._log.error(source="output", message="stream_start_failed", metadata={"error": f"{type(e).__name__}: {e}"})
            raise DeviceUnavailableError(f"failed to start output stream: {type(e).__name__}: {e}") from e

    def pause(self) -> None:
        with self._lock:
            self._paused = True
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def resume(self) -> None:
        if self._closed:
            raise DeviceUnavailableError("output session is closed")
        with self._lock:
            self._paused = False
        if self._stream is not None and not self._stream.active:
            try:
                self._stream.start()
            except Exception as e:
                raise DeviceUnavailableError(f"failed to resume output stream: {type(e).__name__}: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        s = self._stream
        self._stream = None
        with self._lock:
            self._buffer = None
        if s is None:
            return
        try:
            s.stop()
        finally:
            s.close()


class OutputDevice:
    """Opens sessions on a sounddevice output (None => system default)."""

    def __init__(self, device: Optional[int | str] = None, *, block_frames: int = 1024, log: Optional[LogManager] = None) -> None:
        self.device = device
        self.block_frames = int(block_frames)
        self.log = log or LogManager()
        self._closed = False

    def open(self, sample_rate: int, channels: int, sample_format: str = "int16") -> OutputSession:
        if self._closed:
            raise DeviceUnavailableError("output device has been released")
        if sample_format not in SUPPORTED_SAMPLE_FORMATS:
            raise DeviceUnavailableError(f"unsupported sample format: {sample_format}")

        # Imported here: sounddevice loads PortAudio at import time.
        try:
            import sounddevice as sd
        except OSError as e:
            raise DeviceUnavailableError(f"PortAudio unavailable: {e}") from e

        device = self.device
        block_frames = self.block_frames

        def stream_factory(callback):
            return sd.RawOutputStream(
                samplerate=int(sample_rate),
                channels=int(channels),
                dtype=sample_format,
                blocksize=block_frames,
                device=device,
                callback=callback,
            )

        try:
            # Probe the device so an unusable output fails here and not on feed().
            sd.check_output_settings(device=device, channels=int(channels), dtype=sample_format, samplerate=int(sample_rate))
        except Exception as e:
            self.log.error(
                source="output",
                message="device_open_failed",
                metadata={"device": device, "sample_rate": sample_rate, "channels": channels, "error": str(e)},
            )
            raise DeviceUnavailableError(f"output device unavailable: {type(e).__name__}: {e}") from e

        self.log.debug(
            source="output",
            message="session_opened",
            metadata={"device": device, "sample_rate": sample_rate, "channels": channels, "block_frames": block_frames},
        )
        return OutputSession(stream_factory, sample_rate=sample_rate, channels=channels, log=self.log)

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
