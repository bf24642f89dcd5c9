from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Callable


class PlaybackState(Enum):
    EMPTY = "empty"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    FINISHED = "finished"


class SharedPlaybackState:
    """The one authoritative playback state, shared by reference.

    The controller and the position tracker both hold this object; every read
    or write of the fields below happens with `lock` held.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.lock = threading.Lock()
        self.clock = clock

        self.state = PlaybackState.EMPTY
        self.position: float = 0.0
        self.duration: float = 0.0

        # Bumped by every transition that stops tracking; a tracker only
        # writes while its epoch is current.
        self.epoch: int = 0

        # Current playback segment: position at segment start + monotonic start time.
        self.segment_base: float = 0.0
        self.segment_started: float = 0.0

    def invalidate_locked(self) -> int:
        self.epoch += 1
        return self.epoch

    def start_segment_locked(self) -> int:
        self.segment_base = self.position
        self.segment_started = self.clock()
        return self.invalidate_locked()

    def elapsed_position_locked(self) -> float:
        """Position implied by wall-clock time in the current segment, clamped to the track."""
        elapsed = self.clock() - self.segment_started
        return min(self.duration, max(0.0, self.segment_base + elapsed))

    def set_position_locked(self, value: float) -> float:
        self.position = min(self.duration, max(0.0, float(value)))
        return self.position

