"""
Job status model and the persisted snapshot shape.

On disk:
    {"time": "<iso timestamp>", "statuses": [{"id": ..., "name": ..., "status": "Running"}]}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ============================================================
# Status
# ============================================================

class Status(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    WAITING = "Waiting"
    UNSATISFIED = "Unsatisfied"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "Status":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def terminal(self) -> bool:
        return self in (Status.SUCCESS, Status.FAILED, Status.CANCELLED, Status.UNSATISFIED)


# ============================================================
# Snapshot
# ============================================================

@dataclass(slots=True)
class StatusRecord:
    id: str
    name: str
    status: Status = Status.UNKNOWN

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "status": self.status.value}

    @classmethod
    def from_dict(cls, data: dict) -> "StatusRecord":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            status=Status.parse(data.get("status")),
        )


@dataclass
class StatusLog:
    time: str = ""
    statuses: list[StatusRecord] = field(default_factory=list)

    def get(self, job_id: str) -> Optional[StatusRecord]:
        for record in self.statuses:
            if record.id == job_id:
                return record
        return None

    def upsert(self, job_id: str, name: str, status: Status) -> StatusRecord:
        record = self.get(job_id)
        if record is None:
            record = StatusRecord(id=job_id, name=name, status=status)
            self.statuses.append(record)
        else:
            record.status = status
            if name:
                record.name = name
        return record

    def copy(self) -> "StatusLog":
        return StatusLog.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {"time": self.time, "statuses": [r.to_dict() for r in self.statuses]}

    @classmethod
    def from_dict(cls, data: Any) -> "StatusLog":
        if not isinstance(data, dict):
            raise ValueError("status snapshot must be an object")
        records: list[StatusRecord] = []
        seen: set[str] = set()
        for item in data.get("statuses") or []:
            record = StatusRecord.from_dict(item)
            if record.id in seen:
                continue
            seen.add(record.id)
            records.append(record)
        return cls(time=str(data.get("time", "")), statuses=records)
