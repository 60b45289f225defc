"""
Scheduling domain model.

Two layers:
    - Trigger ("when"): what the job author wrote
    - ScheduleSpec: what the scheduler registers (one instant or a cron line)

Wire format (job files):
    {"type": "once",  "trigger": {"date": "2030/01/01", "time": "08:00"}}
    {"type": "daily", "trigger": {"time": "09:30"}}
    {"type": "cron",  "trigger": "*/5 * * * *"}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Literal, Mapping, Union

from autopilot.errors import InvalidJobError


# ============================================================
# Trigger Model
# ============================================================

TriggerKind = Literal["once", "daily", "weekly", "monthly", "yearly", "cron"]


@dataclass(frozen=True, slots=True)
class Once:
    """Absolute local date (YYYY/MM/DD) and time (HH:MM[:SS])."""

    date: str
    time: str

    kind: ClassVar[str] = "once"


@dataclass(frozen=True, slots=True)
class TimeOfDay:
    """Recurring trigger carrying only a time of day."""

    time: str

    kind: ClassVar[str] = ""


@dataclass(frozen=True, slots=True)
class Daily(TimeOfDay):
    kind: ClassVar[str] = "daily"


@dataclass(frozen=True, slots=True)
class Weekly(TimeOfDay):
    """Every Monday."""

    kind: ClassVar[str] = "weekly"


@dataclass(frozen=True, slots=True)
class Monthly(TimeOfDay):
    """First day of every month."""

    kind: ClassVar[str] = "monthly"


@dataclass(frozen=True, slots=True)
class Yearly(TimeOfDay):
    """Every January 1st."""

    kind: ClassVar[str] = "yearly"


@dataclass(frozen=True, slots=True)
class Cron:
    """Raw cron expression, passed to the engine verbatim."""

    expression: str

    kind: ClassVar[str] = "cron"


When = Union[Once, Daily, Weekly, Monthly, Yearly, Cron]

_TIME_OF_DAY: dict[str, type[TimeOfDay]] = {
    cls.kind: cls for cls in (Daily, Weekly, Monthly, Yearly)
}


# ============================================================
# Schedule Model
# ============================================================

@dataclass(frozen=True, slots=True)
class OneShot:
    """Fire exactly once at an aware datetime."""

    at: datetime


@dataclass(frozen=True, slots=True)
class Recurring:
    """Fire on every match of a cron expression."""

    expression: str


ScheduleSpec = Union[OneShot, Recurring]


# ============================================================
# (De)serialization
# ============================================================

def parse_when(data: Any) -> When:
    """
    Build a trigger from its serialized form.

    Raises:
        InvalidJobError: unknown type or malformed trigger payload.
    """
    if not isinstance(data, Mapping):
        raise InvalidJobError(f"'when' must be an object, got {type(data).__name__}")

    kind = str(data.get("type", "")).lower()
    trigger = data.get("trigger")

    if kind == "cron":
        if isinstance(trigger, Mapping):
            trigger = trigger.get("expression")
        if not isinstance(trigger, str) or not trigger.strip():
            raise InvalidJobError("Cron trigger requires a non-empty expression string")
        return Cron(expression=trigger.strip())

    if not isinstance(trigger, Mapping):
        raise InvalidJobError(f"Trigger '{kind}' requires an object payload")

    if kind == "once":
        date, time = trigger.get("date"), trigger.get("time")
        if not isinstance(date, str) or not isinstance(time, str):
            raise InvalidJobError("Once trigger requires 'date' and 'time' strings")
        return Once(date=date, time=time)

    cls = _TIME_OF_DAY.get(kind)
    if cls is None:
        raise InvalidJobError(f"Unknown trigger type: {data.get('type')!r}")

    time = trigger.get("time")
    if not isinstance(time, str):
        raise InvalidJobError(f"Trigger '{kind}' requires a 'time' string")
    return cls(time=time)


def dump_when(when: When) -> dict[str, Any]:
    """Inverse of parse_when."""
    if isinstance(when, Cron):
        return {"type": "cron", "trigger": when.expression}
    if isinstance(when, Once):
        return {"type": "once", "trigger": {"date": when.date, "time": when.time}}
    return {"type": when.kind, "trigger": {"time": when.time}}
