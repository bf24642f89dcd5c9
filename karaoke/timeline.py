from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from engine.errors import UnorderedTimelineError


@dataclass(frozen=True, slots=True)
class LyricLine:
    timestamp: float  # seconds from track start
    text: str
    index: int

    @property
    def is_rest(self) -> bool:
        return not self.text.strip()


class LyricTimeline:
    """Ordered lyric lines with an "active line at time T" lookup.

    Immutable once built; a new song gets a new timeline.
    """

    __slots__ = ("_lines", "_times")

    def __init__(self, lines: Sequence[LyricLine] = ()) -> None:
        self._lines: tuple[LyricLine, ...] = tuple(lines)
        self._times: tuple[float, ...] = tuple(line.timestamp for line in self._lines)

    @classmethod
    def load(cls, entries: Iterable[tuple[float, str]]) -> "LyricTimeline":
        """Store (timestamp, text) entries as given, numbering them in order."""
        return cls([LyricLine(timestamp=max(0.0, float(t)), text=str(text), index=i) for i, (t, text) in enumerate(entries)])

    @classmethod
    def empty(cls) -> "LyricTimeline":
        return cls()

    @property
    def lines(self) -> tuple[LyricLine, ...]:
        return self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self):
        return iter(self._lines)

    def __getitem__(self, index: int) -> LyricLine:
        return self._lines[index]

    def __bool__(self) -> bool:
        return bool(self._lines)

    def validate(self) -> None:
        for i in range(1, len(self._times)):
            if self._times[i] < self._times[i - 1]:
                raise UnorderedTimelineError(i, self._times[i], self._times[i - 1])

    def active_index(self, position: float) -> int:
        """Index of the last line whose timestamp <= position, or -1.

        Negative positions are clamped to 0.
        """
        if not self._times:
            return -1
        return bisect_right(self._times, max(0.0, float(position))) - 1

    def window(self, index: int, before: int = 2, after: int = 2) -> list[Optional[LyricLine]]:
        """Lines around `index`, padded with None so the window size is fixed."""
        out: list[Optional[LyricLine]] = []
        for i in range(index - before, index + after + 1):
            out.append(self._lines[i] if 0 <= i < len(self._lines) else None)
        return out


def load_checked(entries: Iterable[tuple[float, str]]) -> tuple[LyricTimeline, Optional[UnorderedTimelineError]]:
    """Build and validate a timeline; an unordered one degrades to empty.

    Returns the timeline to use and the validation error, if any, so the
    caller can surface it as a warning.
    """
    timeline = LyricTimeline.load(entries)
    try:
        timeline.validate()
    except UnorderedTimelineError as e:
        return LyricTimeline.empty(), e
    return timeline, None
