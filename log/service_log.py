from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional


def get_repo_root() -> Path:
    """Best-effort repo root.

    This file lives at <root>/log/service_log.py.
    """
    try:
        return Path(__file__).resolve().parents[1]
    except Exception:
        return Path.cwd()


def get_runtime_root() -> Path:
    """Directory containing the executable when frozen, otherwise the repo root."""
    if bool(getattr(sys, "frozen", False)):
        return Path(sys.executable).resolve().parent
    return get_repo_root()


def get_service_log_dir() -> Path:
    """Return the directory where player logs are written.

    Defaults to <runtime_root>/service_logs. Override with KARAOKE_SERVICE_LOG_DIR;
    a relative override is resolved against the runtime root.
    """
    override = (os.environ.get("KARAOKE_SERVICE_LOG_DIR") or "").strip()
    if override:
        base = Path(override)
        if not base.is_absolute():
            base = get_runtime_root() / base
    else:
        base = get_runtime_root() / "service_logs"

    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass
    return base


def safe_filename(name: str) -> str:
    name = str(name or "").strip() or "karaoke.log"
    name = name.replace("/", "_").replace("\\", "_")
    name = "".join(ch for ch in name if (ch.isalnum() or ch in ("-", "_", ".")))
    return name or "karaoke.log"


def log_path_for(component: str, *, env_value: Optional[str] = None) -> Path:
    """Log file for a component, always under the service log dir.

    `env_value` may name a different file; only its basename is used so the
    log cannot escape the service log dir.
    """
    base = get_service_log_dir()
    if env_value:
        return (base / safe_filename(Path(str(env_value)).name)).resolve()
    return (base / safe_filename(f"{component}.log")).resolve()
