from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from engine.state import PlaybackState, SharedPlaybackState
from log.log_manager import LogManager

# Called with the shared lock held.
TickHook = Callable[[float], None]
FinishedHook = Callable[[float], None]


class PositionTracker:
    """Periodic writer of the shared position for one playback segment.

    A tracker is bound to the epoch current when the segment started. Every
    tick re-checks that epoch under the shared lock before writing, so a tick
    that wakes up after Pause/Stop/Seek/Close finds a newer epoch and exits
    without touching the position. One tracker per segment; never restarted.
    """

    def __init__(
        self,
        shared: SharedPlaybackState,
        epoch: int,
        *,
        interval_s: float,
        on_tick: Optional[TickHook] = None,
        on_finished: Optional[FinishedHook] = None,
        log: Optional[LogManager] = None,
        name: str = "KaraokePositionTracker",
    ) -> None:
        self._shared = shared
        self.epoch = int(epoch)
        self._interval = max(0.001, float(interval_s))
        self._on_tick = on_tick
        self._on_finished = on_finished
        self._log = log
        self._cancel = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.ticks = 0
        self.finished = False

    def start(self) -> "PositionTracker":
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Ask the thread to exit; the epoch check already blocks stale writes."""
        self._cancel.set()

    def join(self, timeout: Optional[float] = None) -> None:
        # Never call with the shared lock held: the thread may be waiting on it.
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def tick(self) -> bool:
        """Run one tick. Returns False once this tracker should stop."""
        t0 = time.perf_counter()
        shared = self._shared
        with shared.lock:
            if shared.epoch != self.epoch or shared.state is not PlaybackState.PLAYING:
                return False

            position = shared.elapsed_position_locked()
            if position < shared.position:
                # Position is monotonic while playing.
                position = shared.position
            shared.position = position
            self.ticks += 1

            if self._on_tick is not None:
                self._on_tick(position)

            done = position >= shared.duration
            if done:
                shared.position = shared.duration
                shared.state = PlaybackState.FINISHED
                shared.invalidate_locked()
                self.finished = True
                if self._on_finished is not None:
                    self._on_finished(shared.duration)

        if self._log is not None:
            self._log.debug(
                source="tracker",
                message="tick",
                metadata={"epoch": self.epoch, "position_s": round(position, 3), "tick_ms": round((time.perf_counter() - t0) * 1000, 2)},
            )
        return not done

    def _run(self) -> None:
        while not self._cancel.wait(self._interval):
            if not self.tick():
                return
