from __future__ import annotations

import os
import random
import threading
from typing import Callable, Dict, List, Optional

import numpy as np
import pytest

from engine.errors import AudioFileNotFoundError, DeviceUnavailableError
from engine.track import DecodedAudio
from engine.tuning import KaraokeTuning


@pytest.fixture(scope="session", autouse=True)
def _service_log_dir(tmp_path_factory):
    # Keep test runs from writing into <repo>/service_logs.
    path = tmp_path_factory.mktemp("service_logs")
    old = os.environ.get("KARAOKE_SERVICE_LOG_DIR")
    os.environ["KARAOKE_SERVICE_LOG_DIR"] = str(path)
    yield path
    if old is None:
        os.environ.pop("KARAOKE_SERVICE_LOG_DIR", None)
    else:
        os.environ["KARAOKE_SERVICE_LOG_DIR"] = old


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds


class FakeSession:
    def __init__(self, device: "FakeDevice", sample_rate: int, channels: int) -> None:
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self.buffer: Optional[bytes] = None
        self.start_offset: Optional[int] = None
        self.paused = False
        self.closed = False
        self.calls: List[str] = []

    @property
    def bytes_fed(self) -> int:
        return self.start_offset or 0

    def feed(self, buffer: bytes, start_offset: int = 0, *, paused: bool = False) -> None:
        if self.device.fail_feed:
            raise DeviceUnavailableError("feed failed")
        self.buffer = buffer
        self.start_offset = start_offset
        self.paused = paused
        self.calls.append("feed")

    def pause(self) -> None:
        self.paused = True
        self.calls.append("pause")

    def resume(self) -> None:
        if self.device.fail_resume:
            raise DeviceUnavailableError("resume failed")
        self.paused = False
        self.calls.append("resume")

    def close(self) -> None:
        self.closed = True
        self.calls.append("close")


class FakeDevice:
    """Output device double recording every session it opens."""

    def __init__(self) -> None:
        self.sessions: List[FakeSession] = []
        self.fail_open = False
        self.fail_feed = False
        self.fail_resume = False
        self.closed = False
        # Runs inside open(), before the session exists.
        self.on_open: Optional[Callable[[], None]] = None

    def open(self, sample_rate: int, channels: int, sample_format: str = "int16") -> FakeSession:
        if self.closed or self.fail_open:
            raise DeviceUnavailableError("no output device")
        if self.on_open is not None:
            self.on_open()
        s = FakeSession(self, sample_rate, channels)
        self.sessions.append(s)
        return s

    def close(self) -> None:
        self.closed = True

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]

    @property
    def open_sessions(self) -> List[FakeSession]:
        return [s for s in self.sessions if not s.closed]


def make_decoded(seconds: float = 2.0, sample_rate: int = 100, channels: int = 2, amplitude: float = 0.5) -> DecodedAudio:
    frames = np.full((int(seconds * sample_rate), channels), amplitude, dtype=np.float32)
    return DecodedAudio(frames=frames, sample_rate=sample_rate, channels=channels, metadata={"title": "Song", "codec": "pcm_s16le"})


class FakeDecoder:
    def __init__(self, tracks: Optional[Dict[str, DecodedAudio]] = None) -> None:
        self.tracks = dict(tracks or {})
        self.calls: List[str] = []

    def __call__(self, path: str) -> DecodedAudio:
        self.calls.append(path)
        if path not in self.tracks:
            raise AudioFileNotFoundError(f"audio file not found: {path}")
        return self.tracks[path]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def decoder() -> FakeDecoder:
    return FakeDecoder({"song.wav": make_decoded(2.0), "other.mp3": make_decoded(5.0, channels=1)})


@pytest.fixture
def controller(decoder, device, clock):
    from engine.player import PlaybackController

    tuning = KaraokeTuning(tick_interval_ms=5, default_volume=1.0)
    ctl = PlaybackController(decoder=decoder, device=device, tuning=tuning, clock=clock, rng=random.Random(7))
    yield ctl
    ctl.close()
