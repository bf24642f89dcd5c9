"""
Playback Controller Event API

This module defines the events the playback controller hands back to its
caller. Events are immutable and are drained from the controller with
`PlaybackController.pump()`.

Design Principles:
- All events are frozen dataclasses (immutable)
- No UI dependencies, no side effects or logic in event classes
- Events are queued in the order the controller produced them

Event Categories:
1. LIFECYCLE EVENTS: Emitted exactly once per occurrence.
   - TrackLoadedEvent: A track was decoded and its buffer prepared
   - TrackFinishedEvent: Playback reached the end of the track

2. STATE EVENTS:
   - PlaybackStateEvent: The authoritative PlaybackState changed

3. DIAGNOSTIC EVENTS:
   - LyricsWarningEvent: Lyrics were rejected; playback continues without them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from karaoke.scoring import KaraokeSession

# ==============================================================================
# LIFECYCLE EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class TrackLoadedEvent:
    """
    Emitted when LoadFile succeeds.

    Invariant: Never emitted for a failed load (the previous track stays loaded).

    Fields:
        file_path: Path of the decoded file.
        duration_s: Track duration derived from the prepared buffer.
        sample_rate: Native sample rate of the track (Hz).
        channels: 1 or 2.
        metadata: Container tags (title, artist, album, codec).
    """
    file_path: str
    duration_s: float
    sample_rate: int
    channels: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TrackFinishedEvent:
    """
    Emitted when the position tracker reaches the end of the track.

    Invariant: Exactly one TrackFinishedEvent per playback that reaches Finished.
    Invariant: Not emitted for Stop/Close/LoadFile; those end a playback early.

    Fields:
        file_path: Track that finished.
        duration_s: Final position, equal to the track duration.
        session: Final KaraokeSession snapshot for that playback.
    """
    file_path: str
    duration_s: float
    session: "KaraokeSession"


# ==============================================================================
# STATE EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class PlaybackStateEvent:
    """
    Emitted on every PlaybackState transition.

    Fields:
        previous: State name before the transition (e.g. "loaded").
        state: State name after the transition (e.g. "playing").
        position_s: Position at the moment of the transition.
    """
    previous: str
    state: str
    position_s: float


# ==============================================================================
# DIAGNOSTIC EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class LyricsWarningEvent:
    """Lyrics could not be used (e.g. timestamps out of order); shown as no lyrics."""
    source: str
    message: str
