"""
Job domain model.

A job is:
    - identity (id, name, description)
    - a condition tree (implicit AND over the declared list)
    - an ordered task sequence
    - an optional trigger, or an optional poll interval when untriggered
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from autopilot.conditions.types import Condition, Logical, all_of, dump_condition, parse_condition
from autopilot.errors import InvalidJobError
from autopilot.scheduler.types import When, dump_when, parse_when
from autopilot.status.types import Status
from autopilot.tasks.shell import Task


DEFAULT_DESCRIPTION = " "


# ============================================================
# Record (wire) Model
# ============================================================

class TaskRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: str


class JobRecord(BaseModel):
    """Strict structured form of one job file."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    when: Optional[dict[str, Any]] = None
    check_interval: Optional[Union[int, str]] = None
    conditions: list[dict[str, Any]]
    tasks: list[TaskRecord]


# ============================================================
# Runtime Model
# ============================================================

@dataclass(slots=True)
class Job:
    id: str
    name: str
    description: str = DEFAULT_DESCRIPTION
    conditions: tuple[Condition, ...] = ()
    tasks: tuple[Task, ...] = ()
    when: Optional[When] = None
    check_interval_ms: Optional[int] = None
    status: Status = Status.UNKNOWN

    @property
    def condition(self) -> Logical:
        """Root of the condition tree."""
        return all_of(self.conditions)

    @property
    def triggered(self) -> bool:
        return self.when is not None

    @property
    def label(self) -> str:
        return f"{self.name} ({self.id})"

    def clone(self) -> "Job":
        """
        Copy for capture inside a scheduler callback.

        Conditions, tasks and triggers are immutable, so a shallow copy
        is an independent job.
        """
        return dataclasses.replace(self)

    def to_record(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "conditions": [dump_condition(c) for c in self.conditions],
            "tasks": [{"command": t.command} for t in self.tasks],
        }
        if self.when is not None:
            data["when"] = dump_when(self.when)
        if self.check_interval_ms is not None:
            data["check_interval"] = str(self.check_interval_ms)
        return data


# ============================================================
# Construction
# ============================================================

def parse_check_interval(value: Union[int, str, None]) -> Optional[int]:
    """Milliseconds as a positive integer (string or int in job files)."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidJobError(f"Invalid check_interval: {value!r}")
    text = str(value).strip()
    if not text:
        return None
    try:
        interval = int(text)
    except ValueError:
        raise InvalidJobError(f"Invalid check_interval {value!r}, expected milliseconds") from None
    if interval <= 0:
        raise InvalidJobError(f"check_interval must be > 0, got {interval}")
    return interval


def build_job(record: Union[JobRecord, Mapping[str, Any]]) -> Job:
    """
    Build a runtime Job from a job record.

    Raises:
        InvalidJobError: schema violation, unknown condition/trigger type,
            bad check_interval.
    """
    if not isinstance(record, JobRecord):
        try:
            record = JobRecord.model_validate(record)
        except ValidationError as e:
            raise InvalidJobError(f"Invalid job record: {e}") from e

    return Job(
        id=record.id,
        name=record.name or f"job_{record.id}",
        description=record.description if record.description is not None else DEFAULT_DESCRIPTION,
        conditions=tuple(parse_condition(c) for c in record.conditions),
        tasks=tuple(Task(command=t.command) for t in record.tasks),
        when=parse_when(record.when) if record.when is not None else None,
        check_interval_ms=parse_check_interval(record.check_interval),
        status=Status.UNKNOWN,
    )
