"""
Runtime utility helpers.

Design principles:
- Explicit path management (no process-wide path state)
- Pure functional utilities
- Predictable IO boundaries
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any


# ===========================
# Path System
# ===========================

DEFAULT_ROOT = Path.home() / ".config" / "auto-pilot"


@dataclass(frozen=True, slots=True)
class RuntimePaths:
    """
    Directory layout of one autopilot installation.

    Built from the loaded config and handed to every component that
    touches the filesystem.
    """

    root: Path

    @classmethod
    def default(cls) -> "RuntimePaths":
        return cls(root=DEFAULT_ROOT)

    @classmethod
    def from_root(cls, root: str | Path) -> "RuntimePaths":
        return cls(root=Path(root).expanduser())

    def ensure(self) -> "RuntimePaths":
        self.root.mkdir(parents=True, exist_ok=True)
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def jobs_dir(self) -> Path:
        return self.root / "jobs"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def status_file(self) -> Path:
        return self.root / "status.json"

    @property
    def config_file(self) -> Path:
        return self.root / "config.json"


# ===========================
# Clock Utilities
# ===========================

def now_local() -> datetime:
    """Return the current local time as an aware datetime."""
    return datetime.now().astimezone()


def now_iso() -> str:
    """Return current timestamp in ISO-8601 format."""
    return now_local().isoformat()


def now_ms() -> int:
    """Return current unix time in milliseconds."""
    return int(datetime.now().timestamp() * 1000)


# ===========================
# JSON IO
# ===========================

def read_json(path: Path, default: Any = None) -> Any:
    """Load JSON from *path*, returning *default* when missing or corrupt."""
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError, UnicodeDecodeError):
        return default


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Write *data* as pretty JSON next to *path*, then swap it in.

    Readers see either the previous file or the new one, never a
    truncated mix of both.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


# ===========================
# Logging
# ===========================

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def setup_logging(
    logs_dir: Path | None,
    level: str = "INFO",
    verbose: bool = False,
    rotation: str = "10 MB",
    retention: int = 5,
) -> None:
    """
    Install the stderr and rotating file sinks.

    Safe to call more than once; previous sinks are replaced.
    """
    from loguru import logger

    console_level = "DEBUG" if verbose else level.upper()

    logger.remove()
    logger.add(sys.stderr, level=console_level, format=LOG_FORMAT)

    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            logs_dir / "autopilot.log",
            level="DEBUG" if verbose else level.upper(),
            rotation=rotation,
            retention=retention,
            enqueue=True,
            encoding="utf-8",
        )


# ===========================
# String Utilities
# ===========================

_UNSAFE_CHARS = '<>:"/\\|?* '


def truncate(s: str, max_len: int = 120, suffix: str = "...") -> str:
    """Truncate a string with suffix."""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def safe_filename(name: str) -> str:
    """Convert arbitrary string to filesystem-safe filename."""
    name = name.strip()
    for ch in _UNSAFE_CHARS:
        name = name.replace(ch, "_")
    return name
