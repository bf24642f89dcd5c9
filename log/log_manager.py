from __future__ import annotations
from collections import deque
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Any, Dict, Optional

from log.log_record import LogRecord, PerformanceLogRecord
from log.service_log import log_path_for

_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"

# Most recent performances kept in memory for the caller.
PERFORMANCE_HISTORY = 100


def env_truthy(name: str, *, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def setup_logging(component: str) -> logging.Logger:
    """Rotating file logger for a player component.

    Log path: <service_logs>/karaoke.log, override with KARAOKE_LOG_PATH.
    Handlers are attached once per logger.
    """
    name = f"karaoke.{component}"
    logger = logging.getLogger(name)
    if any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        return logger

    level = logging.DEBUG if env_truthy("KARAOKE_LOG_DEBUG") else logging.INFO
    logger.setLevel(level)
    try:
        handler = RotatingFileHandler(
            log_path_for("karaoke", env_value=os.environ.get("KARAOKE_LOG_PATH")),
            maxBytes=1_000_000,
            backupCount=3,
            encoding="utf-8",
            delay=True,
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    except OSError:
        # Unwritable log dir: fall back to the root logger's handlers.
        return logger
    logger.propagate = False
    return logger


class LogManager:
    def __init__(self, component: str = "player"):
        self._debug_enabled = env_truthy("KARAOKE_LOG_DEBUG", default=False)
        self._logger = setup_logging(component)
        self.performances: deque[PerformanceLogRecord] = deque(maxlen=PERFORMANCE_HISTORY)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _emit(self, level: int, *, track_path: str, source: str, message: str, metadata: Optional[Dict[str, Any]]) -> LogRecord:
        if metadata is None:
            metadata = {}
        rec = LogRecord(track_path=track_path or "", tod_start=datetime.now(), source=source, message=message, metadata=metadata)
        self._logger.log(level, "[%s] track=%s %s %s", rec.source, rec.track_path, rec.message, rec.metadata)
        return rec

    def debug(self, *, track_path: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if not self._debug_enabled:
            return
        self._emit(logging.DEBUG, track_path=track_path, source=source, message=message, metadata=metadata)

    def info(self, *, track_path: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, track_path=track_path, source=source, message=message, metadata=metadata)

    def warning(self, *, track_path: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.WARNING, track_path=track_path, source=source, message=message, metadata=metadata)

    def error(self, *, track_path: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.ERROR, track_path=track_path, source=source, message=message, metadata=metadata)

    def log_performance(self, record: PerformanceLogRecord) -> None:
        """Log a finished/stopped performance and keep it for the caller."""
        self.performances.append(record)
        self._logger.info(
            "[performance] track=%s reason=%s score=%d streak=%d hits=%d/%d accuracy=%.1f%% position=%.2fs",
            record.track_path,
            record.reason,
            record.score,
            record.streak,
            record.hits,
            record.total_lines,
            record.accuracy,
            record.position_seconds,
        )
