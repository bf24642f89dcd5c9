from __future__ import annotations

import json
import math
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any


# Central defaults (used as fallbacks when env vars and/or karaoke_tuning.json are absent).
DEFAULT_TICK_INTERVAL_MS = 100
DEFAULT_VOLUME = 1.0
DEFAULT_SEEK_STEP_S = 10
DEFAULT_BLOCK_FRAMES = 1024


@dataclass(frozen=True, slots=True)
class KaraokeTuning:
    """Player settings (tracking cadence, output buffering, control steps)."""

    tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS
    default_volume: float = DEFAULT_VOLUME
    seek_step_s: int = DEFAULT_SEEK_STEP_S
    output_device: int | str | None = None
    block_frames: int = DEFAULT_BLOCK_FRAMES

    @property
    def tick_interval_s(self) -> float:
        return self.tick_interval_ms / 1000.0


def _repo_root() -> Path:
    # engine/ is a direct child of repo root.
    return Path(__file__).resolve().parents[1]


def _base_dir_for_relative_paths() -> Path:
    # For a frozen app, relative paths resolve next to the executable.
    if bool(getattr(sys, "frozen", False)):
        return Path(sys.executable).resolve().parent
    return _repo_root()


def resolve_tuning_path() -> Path:
    env = (os.environ.get("KARAOKE_TUNING_PATH") or "").strip()
    if env:
        p = Path(env)
        if not p.is_absolute():
            p = _base_dir_for_relative_paths() / p
        return p
    return _base_dir_for_relative_paths() / "karaoke_tuning.json"


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def _get(obj: dict[str, Any], *keys: str) -> Any:
    cur: Any = obj
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return None
        cur = cur[k]
    return cur


def _as_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def _as_device(value: Any) -> int | str | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    return int(raw) if raw.isdigit() else raw


def _env(key: str) -> str | None:
    v = os.environ.get(key)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _first(*values: Any, default: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return default


def load_tuning() -> KaraokeTuning:
    """Load karaoke_tuning.json, then let KARAOKE_* env vars override it.

    A missing or corrupt file yields the defaults.
    """
    data = _read_json(resolve_tuning_path()) or {}

    tick = _first(
        _as_int(_env("KARAOKE_TICK_INTERVAL_MS")),
        _as_int(_get(data, "player", "tick_interval_ms")),
        default=DEFAULT_TICK_INTERVAL_MS,
    )
    volume = _first(
        _as_float(_env("KARAOKE_DEFAULT_VOLUME")),
        _as_float(_get(data, "player", "default_volume")),
        default=DEFAULT_VOLUME,
    )
    seek_step = _first(
        _as_int(_env("KARAOKE_SEEK_STEP_S")),
        _as_int(_get(data, "player", "seek_step_s")),
        default=DEFAULT_SEEK_STEP_S,
    )
    device = _first(
        _as_device(_env("KARAOKE_OUTPUT_DEVICE")),
        _as_device(_get(data, "output", "device")),
        default=None,
    )
    block_frames = _first(
        _as_int(_env("KARAOKE_BLOCK_FRAMES")),
        _as_int(_get(data, "output", "block_frames")),
        default=DEFAULT_BLOCK_FRAMES,
    )

    return KaraokeTuning(
        tick_interval_ms=max(1, int(tick)),
        default_volume=min(1.0, max(0.0, float(volume))),
        seek_step_s=max(1, int(seek_step)),
        output_device=device,
        block_frames=max(64, int(block_frames)),
    )
