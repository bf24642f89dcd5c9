from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional

from karaoke.timeline import LyricTimeline

BASE_HIT_CHANCE = 0.70
STREAK_CHANCE_STEP = 0.05
STREAK_CHANCE_CAP_STEPS = 4
PROGRESS_CHANCE_WEIGHT = 0.1
BEAT_CHANCE_BONUS = 0.1
MAX_HIT_CHANCE = 0.95

BASE_POINTS = 100
ON_BEAT_POINTS = 50

BEAT_MS = 250
BEATS_PER_BAR = 4

# streak value -> bonus; every 15th streak (that is not listed here) gets LEGENDARY_BONUS.
MILESTONE_BONUSES = {5: 500, 10: 1000}
LEGENDARY_EVERY = 15
LEGENDARY_BONUS = 2000


def beat_phase(position: float) -> int:
    """4-beat pattern derived from playback position (250ms per beat)."""
    ms = int(max(0.0, float(position)) * 1000)
    return (ms // BEAT_MS) % BEATS_PER_BAR


def is_on_beat(position: float) -> bool:
    return beat_phase(position) == 0


def milestone_bonus(streak: int) -> int:
    if streak in MILESTONE_BONUSES:
        return MILESTONE_BONUSES[streak]
    if streak > 0 and streak % LEGENDARY_EVERY == 0:
        return LEGENDARY_BONUS
    return 0


@dataclass(slots=True)
class KaraokeSession:
    score: int = 0
    streak: int = 0
    hits: int = 0
    total_lines: int = 0
    accuracy: float = 0.0
    hit: list[bool] = field(default_factory=list)
    active: list[bool] = field(default_factory=list)

    def copy(self) -> "KaraokeSession":
        return KaraokeSession(
            score=self.score,
            streak=self.streak,
            hits=self.hits,
            total_lines=self.total_lines,
            accuracy=self.accuracy,
            hit=list(self.hit),
            active=list(self.active),
        )

    def rating(self) -> str:
        if self.streak >= 15:
            return "LEGENDARY PERFORMANCE!"
        if self.streak >= 10:
            return "ON FIRE! UNSTOPPABLE!"
        if self.streak >= 5:
            return "GREAT RHYTHM! KEEP GOING!"
        if self.accuracy >= 80:
            return "Excellent Singing!"
        if self.accuracy >= 60:
            return "Good Performance!"
        return "Finding Your Rhythm..."


@dataclass(frozen=True, slots=True)
class HitResult:
    index: int
    hit: bool
    chance: float
    points: int = 0


class ScoringEngine:
    """Simulated karaoke scoring driven by position updates.

    Each line is evaluated once, the first time it becomes active. The streak
    never breaks on a miss; it only resets with the session.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self._timeline = LyricTimeline.empty()
        self.session = KaraokeSession()

    @property
    def timeline(self) -> LyricTimeline:
        return self._timeline

    def reset(self, timeline: Optional[LyricTimeline] = None) -> None:
        if timeline is not None:
            self._timeline = timeline
        n = len(self._timeline)
        self.session = KaraokeSession(total_lines=n, hit=[False] * n, active=[False] * n)

    def hit_chance(self, index: int, position: float) -> float:
        s = self.session
        line_count = max(1, len(self._timeline))
        chance = (
            BASE_HIT_CHANCE
            + STREAK_CHANCE_STEP * min(s.streak, STREAK_CHANCE_CAP_STEPS)
            + PROGRESS_CHANCE_WEIGHT * (index / line_count)
            + (BEAT_CHANCE_BONUS if is_on_beat(position) else 0.0)
        )
        return min(MAX_HIT_CHANCE, max(0.0, chance))

    def _award(self, index: int, position: float) -> int:
        s = self.session
        s.hit[index] = True
        s.hits += 1
        points = int(BASE_POINTS * (1.0 + s.streak / 10.0))
        if is_on_beat(position):
            points += ON_BEAT_POINTS
        s.streak += 1
        points += milestone_bonus(s.streak)
        s.score += points
        return points

    def on_position(self, position: float) -> Optional[HitResult]:
        """Advance scoring to `position`; returns the evaluation made, if any."""
        s = self.session
        result: Optional[HitResult] = None
        index = self._timeline.active_index(position)
        if 0 <= index < len(s.active) and not s.active[index] and not s.hit[index]:
            s.active[index] = True
            chance = self.hit_chance(index, position)
            if self._rng.random() < chance:
                result = HitResult(index=index, hit=True, chance=chance, points=self._award(index, position))
            else:
                result = HitResult(index=index, hit=False, chance=chance)

        s.accuracy = (s.hits / s.total_lines * 100.0) if s.total_lines else 0.0
        return result

    def snapshot(self) -> KaraokeSession:
        return self.session.copy()
