"""
Trigger translation: declarative "when" → concrete schedule.

    Once                 → OneShot(instant), must lie in the future
    Daily                → "<min> <hour> * * *"
    Weekly               → "<min> <hour> * * 1"     (Monday)
    Monthly              → "<min> <hour> 1 * *"     (1st of the month)
    Yearly               → "<min> <hour> 1 1 *"     (January 1st)
    Cron                 → expression, verbatim

The day used by Weekly/Monthly/Yearly is fixed; job files cannot pick
another one.
"""

from __future__ import annotations

from datetime import datetime, time, tzinfo
from typing import Optional

from autopilot.errors import InvalidScheduleError, ScheduleInPastError
from autopilot.scheduler.types import (
    Cron,
    Daily,
    Monthly,
    OneShot,
    Once,
    Recurring,
    ScheduleSpec,
    Weekly,
    When,
    Yearly,
)
from autopilot.utils.helpers import now_local


DATE_FORMAT = "%Y/%m/%d"
TIME_FORMATS = ("%H:%M:%S", "%H:%M")

_CRON_TEMPLATES = {
    Daily: "{minute} {hour} * * *",
    Weekly: "{minute} {hour} * * 1",
    Monthly: "{minute} {hour} 1 * *",
    Yearly: "{minute} {hour} 1 1 *",
}


# ============================================================
# Parsing
# ============================================================

def parse_time(text: str) -> time:
    """Parse HH:MM:SS or HH:MM."""
    value = text.strip()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise InvalidScheduleError(f"Invalid time {text!r}, expected HH:MM:SS or HH:MM")


def parse_date(text: str) -> datetime:
    try:
        return datetime.strptime(text.strip(), DATE_FORMAT)
    except ValueError:
        raise InvalidScheduleError(f"Invalid date {text!r}, expected YYYY/MM/DD") from None


def localize(naive: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """
    Attach the local (or given) timezone to a wall-clock datetime.

    Raises InvalidScheduleError when the wall-clock time is skipped
    (DST gap) or occurs twice (DST fold).
    """
    if tz is None:
        early = naive.replace(fold=0).astimezone()
        late = naive.replace(fold=1).astimezone()
    else:
        early = naive.replace(tzinfo=tz, fold=0)
        late = naive.replace(tzinfo=tz, fold=1)

    if early.utcoffset() != late.utcoffset():
        raise InvalidScheduleError(
            f"Ambiguous or non-existent local time: {naive.isoformat(sep=' ')}"
        )
    return early


def resolve_once(when: Once, now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> OneShot:
    day = parse_date(when.date)
    clock = parse_time(when.time)
    instant = localize(datetime.combine(day.date(), clock), tz)

    now = now or now_local()
    if now.tzinfo is None:
        now = now.astimezone()
    if instant <= now:
        raise ScheduleInPastError(f"Scheduled time {instant.isoformat()} is in the past")

    return OneShot(at=instant)


def to_cron_expression(when: When) -> str:
    """Cron line for a recurring trigger (Cron passes through unchanged)."""
    if isinstance(when, Cron):
        return when.expression

    template = _CRON_TEMPLATES.get(type(when))
    if template is None:
        raise InvalidScheduleError(f"Trigger '{when.kind}' has no cron form")

    clock = parse_time(when.time)
    return template.format(minute=clock.minute, hour=clock.hour)


# ============================================================
# Public API
# ============================================================

def resolve_when(
    when: When,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> ScheduleSpec:
    """
    Translate a trigger into what the scheduler registers.

    Args:
        when: trigger from the job record.
        now: reference instant for the Once past check (defaults to the clock).
        tz: timezone for Once (defaults to the system local zone).

    Raises:
        InvalidScheduleError: unparsable date/time or DST-ambiguous instant.
        ScheduleInPastError: a Once trigger not strictly in the future.
    """
    if isinstance(when, Once):
        return resolve_once(when, now=now, tz=tz)
    return Recurring(expression=to_cron_expression(when))
