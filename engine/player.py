from __future__ import annotations

import dataclasses
import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from engine.decoder import decode_file
from engine.errors import DeviceUnavailableError, NoTrackLoadedError
from engine.messages.events import LyricsWarningEvent, PlaybackStateEvent, TrackFinishedEvent, TrackLoadedEvent
from engine.output_device import OutputDevice, OutputSession
from engine.pcm import build_pcm_buffer, byte_offset_for, clamp_volume
from engine.position_tracker import PositionTracker
from engine.state import PlaybackState, SharedPlaybackState
from engine.track import AudioTrack, DecodedAudio
from engine.tuning import KaraokeTuning, load_tuning
from karaoke.lrc import load_lrc
from karaoke.scoring import KaraokeSession, ScoringEngine
from karaoke.timeline import LyricTimeline, load_checked
from log.log_manager import LogManager
from log.log_record import PerformanceLogRecord


@dataclass(frozen=True, slots=True)
class PlaybackSnapshot:
    """Consistent read of everything the display layer shows."""
    state: PlaybackState
    position: float
    duration: float
    volume: float
    active_index: int
    session: KaraokeSession
    file_path: str = ""


class PlaybackController:
    """Karaoke playback state machine.

    Public operations are serialized by a command lock held for their whole
    duration (decode and device open included). The shared playback state has
    its own short-lived lock, taken by operations only to commit a transition
    and by the position tracker once per tick. Slow I/O never runs under the
    shared lock.

    Lifecycle:
        ctl = PlaybackController()
        ctl.load_file("song.mp3")
        ctl.load_lyrics("song.lrc")
        ctl.play()
        for evt in ctl.pump(): ...
        ctl.close()
    """

    def __init__(
        self,
        *,
        decoder: Callable[[str], DecodedAudio] = decode_file,
        device: Optional[OutputDevice] = None,
        tuning: Optional[KaraokeTuning] = None,
        log: Optional[LogManager] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.tuning = tuning or load_tuning()
        self.log = log or LogManager("player")
        self._decode = decoder
        self._device = device if device is not None else OutputDevice(
            self.tuning.output_device, block_frames=self.tuning.block_frames, log=self.log
        )

        self._command_lock = threading.Lock()
        self._shared = SharedPlaybackState(clock)
        self._scoring = ScoringEngine(rng)

        self._track: Optional[AudioTrack] = None
        self._decoded: Optional[DecodedAudio] = None
        self._volume = clamp_volume(self.tuning.default_volume)
        self._session: Optional[OutputSession] = None
        self._tracker: Optional[PositionTracker] = None
        self._completion = threading.Event()
        self._performance_started: Optional[datetime] = None
        self._closed = False

        self._events: deque = deque()
        # Written by the tracker under the shared lock; logged by pump().
        self._pending_performances: deque = deque()

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    @property
    def track(self) -> Optional[AudioTrack]:
        return self._track

    @property
    def timeline(self) -> LyricTimeline:
        return self._scoring.timeline

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def state(self) -> PlaybackState:
        with self._shared.lock:
            return self._shared.state

    @property
    def position(self) -> float:
        with self._shared.lock:
            return self._shared.position

    def snapshot(self) -> PlaybackSnapshot:
        shared = self._shared
        with shared.lock:
            timeline = self._scoring.timeline
            return PlaybackSnapshot(
                state=shared.state,
                position=shared.position,
                duration=shared.duration,
                volume=self._volume,
                active_index=timeline.active_index(shared.position) if timeline else -1,
                session=self._scoring.snapshot(),
                file_path=self._track.file_path if self._track is not None else "",
            )

    def pump(self) -> List[object]:
        """Drain queued events in the order they were produced.

        Also releases the output session of a playback that reached Finished
        and writes its queued performance record.
        """
        with self._command_lock:
            self._reap_finished()
            self._log_performances()
        evts: List[object] = []
        while True:
            try:
                evts.append(self._events.popleft())
            except IndexError:
                break
        return evts

    def wait_for_completion(self, timeout: Optional[float] = None) -> bool:
        """Block until the current playback reaches Finished; False on timeout."""
        return self._completion.wait(timeout)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def load_file(self, path: str | Path) -> AudioTrack:
        with self._command_lock:
            self._ensure_open()
            t0 = time.perf_counter()
            file_path = str(path)

            # Nothing below mutates state until decode and build have succeeded.
            decoded = self._decode(file_path)
            volume = self._volume
            buffer = build_pcm_buffer(decoded.frames, decoded.sample_rate, decoded.channels, volume)
            track = AudioTrack.from_buffer(
                file_path,
                decoded.sample_rate,
                decoded.channels,
                buffer,
                volume=volume,
                metadata=dict(decoded.metadata),
                codec_info=decoded.metadata.get("codec"),
            )
            load_ms = (time.perf_counter() - t0) * 1000

            shared = self._shared
            with shared.lock:
                shared.invalidate_locked()
                record = self._take_performance_locked("reloaded", shared.position)
                tracker, session = self._detach_locked()
                self._track = track
                self._decoded = decoded
                shared.duration = track.duration_s
                shared.position = 0.0
                self._scoring.reset(LyricTimeline.empty())
                self._completion = threading.Event()
                # A reload always reports a transition, even Loaded -> Loaded.
                previous = shared.state
                shared.state = PlaybackState.LOADED
                self._events.append(PlaybackStateEvent(previous.value, PlaybackState.LOADED.value, 0.0))
                self._events.append(
                    TrackLoadedEvent(
                        file_path=file_path,
                        duration_s=track.duration_s,
                        sample_rate=track.sample_rate,
                        channels=track.channels,
                        metadata=dict(track.metadata),
                    )
                )

            self._release(tracker, session)
            self._log_performances(record)
            self.log.info(
                track_path=file_path,
                source="player",
                message="track_loaded",
                metadata={
                    "duration_s": round(track.duration_s, 3),
                    "sample_rate": track.sample_rate,
                    "channels": track.channels,
                    "codec": track.codec_info,
                    "load_ms": round(load_ms, 1),
                },
            )
            return track

    def play(self) -> None:
        with self._command_lock:
            self._ensure_open()
            shared = self._shared
            with shared.lock:
                state = shared.state
                position = shared.position
            if state is PlaybackState.EMPTY or self._track is None:
                raise NoTrackLoadedError("no track loaded")
            if state is PlaybackState.PLAYING:
                return
            if state is PlaybackState.PAUSED:
                self._resume_locked()
                return

            track = self._track
            if state is PlaybackState.FINISHED:
                position = 0.0
            self._reap_finished()
            session = self._open_session(track, byte_offset_for(position, track.sample_rate, track.channels, len(track.buffer)))

            with shared.lock:
                shared.invalidate_locked()
                shared.set_position_locked(position)
                # Fresh performance: scoring starts over before any line is evaluated.
                self._scoring.reset()
                self._performance_started = datetime.now()
                self._completion = threading.Event()
                self._session = session
                self._start_tracking_locked()

            self.log.info(
                track_path=track.file_path,
                source="player",
                message="play",
                metadata={"from_state": state.value, "position_s": round(position, 3)},
            )

    def pause(self) -> bool:
        with self._command_lock:
            shared = self._shared
            with shared.lock:
                if shared.state is not PlaybackState.PLAYING:
                    return False
                position = max(shared.position, shared.elapsed_position_locked())
                shared.position = position
                shared.invalidate_locked()
                self._set_state_locked(PlaybackState.PAUSED)
                tracker = self._tracker
                self._tracker = None
                session = self._session

            if tracker is not None:
                tracker.cancel()
            if session is not None:
                try:
                    session.pause()
                except Exception as e:
                    self.log.error(source="player", message="session_pause_failed", metadata={"error": f"{type(e).__name__}: {e}"})
            self.log.info(track_path=self._track_path(), source="player", message="pause", metadata={"position_s": round(position, 3)})
            return True

    def resume(self) -> bool:
        """Continue a paused playback; no-op from any other state."""
        with self._command_lock:
            self._ensure_open()
            if self.state is not PlaybackState.PAUSED:
                return False
            self._resume_locked()
            return True

    def stop(self) -> None:
        with self._command_lock:
            self._stop_locked("stopped")

    def seek_to(self, seconds: float) -> float:
        """Move to `seconds` (clamped to the track); returns the new position."""
        with self._command_lock:
            self._ensure_open()
            self._reap_finished()
            track = self._track
            shared = self._shared
            with shared.lock:
                state = shared.state
                duration = shared.duration
            if track is None or state is PlaybackState.EMPTY:
                raise NoTrackLoadedError("no track loaded")

            target = min(duration, max(0.0, float(seconds)))

            if state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
                offset = byte_offset_for(target, track.sample_rate, track.channels, len(track.buffer))
                # Open before touching state: a device failure leaves everything as it was.
                session = self._open_session(track, offset, paused=state is PlaybackState.PAUSED)
                unused: Optional[OutputSession] = None
                with shared.lock:
                    shared.invalidate_locked()
                    shared.set_position_locked(target)
                    old_session = self._session
                    old_tracker = self._tracker
                    self._tracker = None
                    self._session = session
                    if shared.state is PlaybackState.PLAYING:
                        self._start_tracking_locked()
                    elif shared.state is PlaybackState.FINISHED:
                        # Reached the end while the new session was opening.
                        self._session = None
                        unused = session
                        self._set_state_locked(PlaybackState.STOPPED)
                self._release(old_tracker, old_session)
                self._release(None, unused)
            else:
                with shared.lock:
                    shared.set_position_locked(target)
                    if shared.state is PlaybackState.FINISHED:
                        self._set_state_locked(PlaybackState.STOPPED)

            self.log.info(
                track_path=track.file_path,
                source="player",
                message="seek",
                metadata={"requested_s": seconds, "position_s": round(target, 3), "state": state.value},
            )
            return target

    def seek_by(self, delta_s: float) -> float:
        return self.seek_to(self.position + float(delta_s))

    def set_volume(self, volume: float) -> float:
        """Clamp and apply a new volume; returns the value in effect.

        Volume is baked into the prepared buffer, so a loaded track is
        rebuilt from its decoded frames. An active session is replaced by one
        reading the new buffer from the same byte offset.
        """
        with self._command_lock:
            self._ensure_open()
            self._reap_finished()
            v = clamp_volume(volume)
            track = self._track
            decoded = self._decoded
            if track is None or decoded is None or track.volume == v:
                self._volume = v
                return v

            buffer = build_pcm_buffer(decoded.frames, decoded.sample_rate, decoded.channels, v)
            rebuilt = dataclasses.replace(track, buffer=buffer, volume=v)

            shared = self._shared
            with shared.lock:
                state = shared.state
            old_session = self._session
            new_session: Optional[OutputSession] = None
            if state in (PlaybackState.PLAYING, PlaybackState.PAUSED) and old_session is not None:
                new_session = self._open_session(rebuilt, old_session.bytes_fed, paused=state is PlaybackState.PAUSED)

            unused: Optional[OutputSession] = None
            with shared.lock:
                self._track = rebuilt
                self._volume = v
                if new_session is not None:
                    if shared.state is state:
                        self._session = new_session
                    else:
                        # Reached the end while the new session was opening.
                        unused, new_session = new_session, None
            if new_session is not None:
                self._release(None, old_session)
            self._release(None, unused)

            self.log.info(track_path=track.file_path, source="player", message="volume", metadata={"volume": v, "state": state.value})
            return v

    def set_lyrics(self, entries: Iterable[tuple[float, str]], *, source: str = "") -> LyricTimeline:
        """Replace the lyric timeline; unordered input degrades to no lyrics."""
        timeline, error = load_checked(entries)
        if error is not None:
            self._lyrics_warning(source, str(error))
        self._set_timeline(timeline)
        return timeline

    def load_lyrics(self, path: str | Path) -> LyricTimeline:
        source = str(path)
        try:
            doc = load_lrc(path)
        except OSError as e:
            self._lyrics_warning(source, f"cannot read lyrics: {e}")
            self._set_timeline(LyricTimeline.empty())
            return LyricTimeline.empty()
        timeline, error = doc.timeline()
        if error is not None:
            self._lyrics_warning(source, str(error))
        self._set_timeline(timeline)
        self.log.debug(track_path=self._track_path(), source="lyrics", message="lyrics_loaded", metadata={"path": source, "lines": len(timeline)})
        return timeline

    def close(self) -> None:
        """Stop and release the track buffer and the output device for good."""
        with self._command_lock:
            if self._closed:
                return
            self._stop_locked("closed")
            with self._shared.lock:
                self._track = None
                self._decoded = None
            self._closed = True
            self._device.close()
            self.log.info(source="player", message="closed", metadata={})

    # ------------------------------------------------------------------
    # Internals (command lock held unless noted)
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise DeviceUnavailableError("player has been closed")

    def _track_path(self) -> str:
        return self._track.file_path if self._track is not None else ""

    def _open_session(self, track: AudioTrack, offset: int, *, paused: bool = False) -> OutputSession:
        session = self._device.open(track.sample_rate, track.channels)
        try:
            session.feed(track.buffer, offset, paused=paused)
        except Exception:
            session.close()
            raise
        return session

    def _release(self, tracker: Optional[PositionTracker], session: Optional[OutputSession]) -> None:
        if tracker is not None:
            tracker.cancel()
        if session is not None:
            try:
                session.close()
            except Exception as e:
                self.log.error(source="player", message="session_close_failed", metadata={"error": f"{type(e).__name__}: {e}"})

    def _resume_locked(self) -> None:
        shared = self._shared
        session = self._session
        if session is None:
            track = self._track
            position = self.position
            session = self._open_session(track, byte_offset_for(position, track.sample_rate, track.channels, len(track.buffer)))
        else:
            session.resume()
        with shared.lock:
            self._session = session
            self._start_tracking_locked()
        self.log.info(track_path=self._track_path(), source="player", message="resume", metadata={"position_s": round(self.position, 3)})

    def _stop_locked(self, reason: str) -> None:
        shared = self._shared
        with shared.lock:
            if shared.state is PlaybackState.EMPTY:
                return
            shared.invalidate_locked()
            record = self._take_performance_locked(reason, shared.position)
            tracker, session = self._detach_locked()
            shared.position = 0.0
            self._scoring.reset()
            self._set_state_locked(PlaybackState.STOPPED)

        self._release(tracker, session)
        self._log_performances(record)
        self.log.info(track_path=self._track_path(), source="player", message=reason, metadata={})

    def _reap_finished(self) -> None:
        with self._shared.lock:
            if self._shared.state is not PlaybackState.FINISHED:
                return
            tracker, session = self._detach_locked()
        self._release(tracker, session)

    def _log_performances(self, record: Optional[PerformanceLogRecord] = None) -> None:
        if record is not None:
            self._pending_performances.append(record)
        while self._pending_performances:
            self.log.log_performance(self._pending_performances.popleft())

    # Shared lock held for everything below.

    def _detach_locked(self) -> tuple[Optional[PositionTracker], Optional[OutputSession]]:
        tracker, session = self._tracker, self._session
        self._tracker = None
        self._session = None
        return tracker, session

    def _set_state_locked(self, new: PlaybackState) -> None:
        shared = self._shared
        previous = shared.state
        if previous is new:
            return
        shared.state = new
        self._events.append(PlaybackStateEvent(previous.value, new.value, shared.position))

    def _start_tracking_locked(self) -> None:
        shared = self._shared
        epoch = shared.start_segment_locked()
        self._set_state_locked(PlaybackState.PLAYING)
        self._tracker = PositionTracker(
            shared,
            epoch,
            interval_s=self.tuning.tick_interval_s,
            on_tick=self._scoring.on_position,
            on_finished=self._finish_hook(self._completion),
            log=self.log,
        ).start()

    def _finish_hook(self, completion: threading.Event) -> Callable[[float], None]:
        def on_finished(duration: float) -> None:
            track_path = self._track_path()
            self._events.append(PlaybackStateEvent(PlaybackState.PLAYING.value, PlaybackState.FINISHED.value, duration))
            session = self._scoring.snapshot()
            self._events.append(TrackFinishedEvent(file_path=track_path, duration_s=duration, session=session))
            record = self._take_performance_locked("finished", duration)
            if record is not None:
                self._pending_performances.append(record)
            completion.set()

        return on_finished

    def _take_performance_locked(self, reason: str, position: float) -> Optional[PerformanceLogRecord]:
        started = self._performance_started
        if started is None or self._track is None:
            return None
        self._performance_started = None
        s = self._scoring.session
        return PerformanceLogRecord(
            track_path=self._track.file_path,
            started_at=started,
            stopped_at=datetime.now(),
            duration_seconds=self._shared.duration,
            position_seconds=position,
            score=s.score,
            streak=s.streak,
            hits=s.hits,
            total_lines=s.total_lines,
            accuracy=s.accuracy,
            reason=reason,
            metadata={"rating": s.rating()},
        )

    # Lyrics (command lock not required: only the shared lock is touched)

    def _set_timeline(self, timeline: LyricTimeline) -> None:
        with self._shared.lock:
            self._scoring.reset(timeline)

    def _lyrics_warning(self, source: str, message: str) -> None:
        self._events.append(LyricsWarningEvent(source=source, message=message))
        self.log.warning(track_path=self._track_path(), source="lyrics", message="lyrics_rejected", metadata={"path": source, "error": message})
