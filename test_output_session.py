from unittest import mock

import pytest

from engine.errors import DeviceUnavailableError
from engine.output_device import OutputDevice, OutputSession
from log.log_manager import LogManager


class FakeStream:
    def __init__(self, callback) -> None:
        self.callback = callback
        self.active = False
        self.closed = False

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False

    def close(self) -> None:
        self.closed = True


def _session(channels: int = 1):
    streams = []

    def factory(callback):
        s = FakeStream(callback)
        streams.append(s)
        return s

    return OutputSession(factory, sample_rate=8000, channels=channels, log=LogManager("test")), streams


def _pull(stream: FakeStream, frames: int, frame_bytes: int) -> bytes:
    out = bytearray(frames * frame_bytes)
    stream.callback(out, frames, None, None)
    return bytes(out)


def test_feed_from_offset_and_pad_tail() -> None:
    session, streams = _session()
    session.feed(bytes(range(10)), 4)

    assert streams[0].active
    assert _pull(streams[0], 2, 2) == bytes([4, 5, 6, 7])
    assert _pull(streams[0], 2, 2) == bytes([8, 9, 0, 0])
    assert session.bytes_fed == 10


def test_offset_is_frame_aligned() -> None:
    session, streams = _session(channels=2)
    session.feed(bytes(16), 7)
    assert session.bytes_fed == 4


def test_pause_outputs_silence_and_keeps_offset() -> None:
    session, streams = _session()
    session.feed(b"\x01\x02\x03\x04", 0)
    session.pause()

    assert not streams[0].active
    assert _pull(streams[0], 1, 2) == b"\x00\x00"
    assert session.bytes_fed == 0

    session.resume()
    assert streams[0].active
    assert _pull(streams[0], 1, 2) == b"\x01\x02"


def test_feed_paused_does_not_start() -> None:
    session, streams = _session()
    session.feed(bytes(8), 0, paused=True)
    assert not streams[0].active
    assert session.paused


def test_close_is_idempotent() -> None:
    session, streams = _session()
    session.feed(bytes(8))
    session.close()
    session.close()
    assert streams[0].closed
    assert session.closed
    with pytest.raises(DeviceUnavailableError):
        session.resume()


def test_stream_failure_is_device_unavailable() -> None:
    def factory(callback):
        raise RuntimeError("PortAudio error")

    session = OutputSession(factory, sample_rate=8000, channels=2, log=LogManager("test"))
    with pytest.raises(DeviceUnavailableError):
        session.feed(bytes(8))


def test_device_open_uses_sounddevice() -> None:
    sd = pytest.importorskip("sounddevice")
    device = OutputDevice(device=2, block_frames=256)
    with mock.patch.object(sd, "check_output_settings") as check, mock.patch.object(sd, "RawOutputStream") as raw:
        session = device.open(44100, 2)
        session.feed(bytes(8))

    check.assert_called_once_with(device=2, channels=2, dtype="int16", samplerate=44100)
    kwargs = raw.call_args.kwargs
    assert kwargs["samplerate"] == 44100
    assert kwargs["blocksize"] == 256
    assert kwargs["device"] == 2
    raw.return_value.start.assert_called_once()


def test_released_device_refuses_open() -> None:
    device = OutputDevice()
    device.close()
    with pytest.raises(DeviceUnavailableError):
        device.open(44100, 2)


def test_unusable_device_is_device_unavailable() -> None:
    sd = pytest.importorskip("sounddevice")
    device = OutputDevice(device="nope")
    with mock.patch.object(sd, "check_output_settings", side_effect=ValueError("No such device")):
        with pytest.raises(DeviceUnavailableError):
            device.open(44100, 2)
