"""
Error taxonomy for the autopilot runtime.

Rules:
    - Every error raised by the core derives from AutoPilotError
    - Schedule errors abort only the owning job's trigger path
    - Leaf evaluation failures never surface as exceptions
"""

from __future__ import annotations

from typing import Optional


class AutoPilotError(Exception):
    """Base error for autopilot."""


class ConfigError(AutoPilotError):
    """Configuration could not be loaded or validated."""


class InvalidJobError(AutoPilotError):
    """A job record failed validation."""


class InvalidScheduleError(AutoPilotError):
    """Bad date, time or cron syntax."""


class ScheduleInPastError(InvalidScheduleError):
    """The resolved instant is not in the future."""


class SchedulerEngineError(AutoPilotError):
    """The underlying cron engine failed to start, stop or register."""


class StatusPersistenceError(AutoPilotError):
    """The status snapshot could not be written."""


class TaskExecutionError(AutoPilotError):
    """A shell task exited non-zero or could not be spawned."""

    def __init__(self, command: str, returncode: Optional[int] = None, reason: str = ""):
        self.command = command
        self.returncode = returncode
        self.reason = reason

        detail = reason or f"exit code {returncode}"
        super().__init__(f"Task failed: {command!r} ({detail})")
