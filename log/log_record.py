from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

@dataclass(frozen=True, slots=True)
class LogRecord:
    track_path: str
    tod_start: datetime
    source: str
    message: str
    metadata: Dict[str, Any]


@dataclass(frozen=True, slots=True)
class PerformanceLogRecord:
    """LogRecord for a finished or stopped karaoke performance."""
    track_path: str
    started_at: datetime
    stopped_at: datetime
    duration_seconds: Optional[float]  # total track duration
    position_seconds: float
    score: int
    streak: int
    hits: int
    total_lines: int
    accuracy: float
    reason: str  # "finished", "stopped", "reloaded", "closed"
    metadata: Dict[str, Any]
