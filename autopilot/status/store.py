"""
Status store.

Holds the persisted snapshot of every known job's status. The file is
shared with other processes (CLI `list`), so every change rewrites the
whole snapshot through a temp file and an atomic replace. Writers are
serialized by a lock; readers never lock.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from autopilot.errors import StatusPersistenceError
from autopilot.status.types import Status, StatusLog, StatusRecord
from autopilot.utils.helpers import now_iso, read_json, write_json_atomic


class StatusStore:
    """
    Snapshot persistence for job statuses.

    A failed write is logged and kept as pending; the next successful
    write carries it along.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._cache = StatusLog()
        self._pending: dict[str, StatusRecord] = {}

    # ============================================================
    # Reads
    # ============================================================

    def read(self) -> StatusLog:
        """Current snapshot from disk; the last known one if unreadable."""
        raw = read_json(self.path)
        if raw is None:
            return self._cache.copy()
        try:
            return StatusLog.from_dict(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("Corrupt status file, using last known snapshot | path={}", self.path)
            return self._cache.copy()

    def get_status(self, job_id: str) -> Status:
        record = self.read().get(job_id)
        return record.status if record else Status.UNKNOWN

    # ============================================================
    # Writes
    # ============================================================

    def initialize(
        self,
        jobs: Iterable[tuple[str, str]],
        status: Status = Status.UNKNOWN,
    ) -> bool:
        """Replace the snapshot wholesale with one record per (id, name)."""
        snapshot = StatusLog()
        for job_id, name in jobs:
            snapshot.upsert(job_id, name, status)

        with self._lock:
            self._pending.clear()
            return self._commit(snapshot)

    def set_status(self, job_id: str, name: str, status: Status) -> bool:
        """
        Update one record (inserting it if missing) and persist.

        Returns False when the write failed; the change stays pending.
        """
        with self._lock:
            snapshot = self._load_for_update()
            for pending in self._pending.values():
                snapshot.upsert(pending.id, pending.name, pending.status)
            snapshot.upsert(job_id, name, status)

            ok = self._commit(snapshot)
            if ok:
                self._pending.clear()
            else:
                self._pending[job_id] = StatusRecord(id=job_id, name=name, status=status)
            return ok

    def reset(self, status: Status = Status.UNKNOWN) -> bool:
        """Set every known record to *status*."""
        with self._lock:
            snapshot = self._load_for_update()
            for record in snapshot.statuses:
                record.status = status
            self._pending.clear()
            return self._commit(snapshot)

    # ============================================================
    # Internals (lock held)
    # ============================================================

    def _load_for_update(self) -> StatusLog:
        raw = read_json(self.path)
        if raw is not None:
            try:
                return StatusLog.from_dict(raw)
            except (ValueError, KeyError, TypeError):
                logger.warning("Corrupt status file, rebuilding from memory | path={}", self.path)
        return self._cache.copy()

    def _commit(self, snapshot: StatusLog) -> bool:
        snapshot.time = now_iso()
        self._cache = snapshot
        try:
            self._write(snapshot)
        except StatusPersistenceError as e:
            logger.error("{}", e)
            return False
        return True

    def _write(self, snapshot: StatusLog) -> None:
        try:
            write_json_atomic(self.path, snapshot.to_dict())
        except OSError as e:
            raise StatusPersistenceError(f"Failed to write status file {self.path}: {e}") from e

    @property
    def pending(self) -> Optional[list[StatusRecord]]:
        """Updates that have not reached the disk yet."""
        with self._lock:
            return list(self._pending.values()) or None
