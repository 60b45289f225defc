"""
Built-in leaf probes.

Only the portable probes live here (fail, variable, command, file).
Hardware and network probes (bluetooth, wifi, power, ...) are supplied by
the host through LeafResolver.register().
"""

from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from autopilot.conditions.evaluator import LeafResolver
from autopilot.conditions.types import LeafKind


DEFAULT_COMMAND_TIMEOUT_S = 30
DEFAULT_MODIFIED_THRESHOLD_S = 300


# ============================================================
# Parameter schemas
# ============================================================

class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid")


class VariableParams(_Params):
    variable: str = ""
    target: str = ""


class CommandParams(_Params):
    command: str = ""
    check_exit_code: Optional[bool] = None
    target_output: Optional[str] = None


class FileParams(_Params):
    path: str = ""
    check_type: str = "exists"
    time_threshold: Optional[int] = None
    size_threshold: Optional[int] = None


# ============================================================
# Probes
# ============================================================

def fail_probe(params: Mapping[str, Any]) -> bool:
    return False


def variable_probe(params: Mapping[str, Any]) -> bool:
    """Environment variable equals target (unset reads as empty)."""
    p = VariableParams.model_validate(params)
    return os.environ.get(p.variable, "") == p.target


def command_probe(params: Mapping[str, Any]) -> bool:
    """
    Run a shell command.

    check_exit_code (default true): satisfied when the command exits 0.
    Otherwise: satisfied when trimmed stdout equals target_output.
    """
    p = CommandParams.model_validate(params)
    if not p.command:
        return False

    proc = subprocess.run(
        p.command,
        shell=True,
        capture_output=True,
        text=True,
        timeout=DEFAULT_COMMAND_TIMEOUT_S,
    )

    check_exit_code = True if p.check_exit_code is None else p.check_exit_code
    if check_exit_code:
        return proc.returncode == 0

    if proc.returncode != 0:
        return False
    if p.target_output is None:
        return True
    return proc.stdout.strip() == p.target_output


def file_probe(params: Mapping[str, Any]) -> bool:
    """
    Path checks.

    check_type:
        exists            - path exists
        modified_recently - mtime within time_threshold seconds (default 300)
        size_changed      - size >= size_threshold bytes (default 0)
    """
    p = FileParams.model_validate(params)
    path = Path(p.path).expanduser()
    check = p.check_type.lower()

    if check == "exists":
        return path.exists()

    if not path.exists():
        return False

    stat = path.stat()

    if check == "modified_recently":
        threshold = p.time_threshold if p.time_threshold is not None else DEFAULT_MODIFIED_THRESHOLD_S
        return (time.time() - stat.st_mtime) < threshold

    if check == "size_changed":
        return stat.st_size >= (p.size_threshold or 0)

    return False


BUILTIN_PROBES = {
    LeafKind.FAIL: fail_probe,
    LeafKind.VARIABLE: variable_probe,
    LeafKind.COMMAND: command_probe,
    LeafKind.FILE: file_probe,
}


def default_resolver() -> LeafResolver:
    """Resolver preloaded with the built-in probes."""
    return LeafResolver(BUILTIN_PROBES)
