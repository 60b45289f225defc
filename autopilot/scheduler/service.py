"""
Runtime scheduler service.

Wraps croniter behind a small asyncio kernel: one loop task sleeps until the
earliest registration is due, fires its callback as an independent task and
computes the next match.

Design principles:
    - Single owner: one scheduler per daemon lifetime (recreated on reload)
    - Event-driven wakeup on registration
    - Fault isolation: a failing callback never stops the loop
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from croniter import croniter
from loguru import logger

from autopilot.errors import (
    InvalidScheduleError,
    ScheduleInPastError,
    SchedulerEngineError,
)
from autopilot.scheduler.types import OneShot, Recurring, ScheduleSpec
from autopilot.utils.helpers import now_local

# ============================================================
# Constants
# ============================================================

DEFAULT_TICK_INTERVAL_S = 1.0


# ============================================================
# Types
# ============================================================

FiringCallback = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class Registration:
    id: str
    label: str
    spec: ScheduleSpec
    callback: FiringCallback
    next_run: Optional[datetime] = None
    runs: int = 0


# ============================================================
# Utilities
# ============================================================

def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


def next_cron_match(expression: str, base: datetime) -> datetime:
    """
    Next instant strictly after *base* matching *expression*.

    Raises:
        InvalidScheduleError: croniter rejected the expression.
    """
    try:
        return croniter(expression, _aware(base)).get_next(datetime)
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidScheduleError(f"Invalid cron expression {expression!r}: {e}") from e


# ============================================================
# Scheduler
# ============================================================

class SchedulerAdapter:
    """
    Cron-capable scheduler owned by the orchestrator.

    Public surface: start(), shutdown(), register_one_shot(),
    register_recurring(). Callbacks carry everything they need; the
    scheduler never looks inside them.
    """

    def __init__(
        self,
        tick_interval_s: float = DEFAULT_TICK_INTERVAL_S,
        clock: Callable[[], datetime] = now_local,
    ):
        self.tick_interval_s = tick_interval_s
        self._clock = clock

        self._registrations: dict[str, Registration] = {}
        self._inflight: set[asyncio.Task] = set()
        self._ids = itertools.count(1)

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._wakeup_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._running

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self) -> None:
        if self._running:
            return

        try:
            self._wakeup_event = asyncio.Event()
            self._loop_task = asyncio.create_task(self._scheduler_loop())
        except RuntimeError as e:
            raise SchedulerEngineError(f"Failed to start scheduler: {e}") from e

        self._running = True
        logger.info("Scheduler started | tick={}s", self.tick_interval_s)

    async def shutdown(self, cancel_inflight: bool = False) -> None:
        """
        Stop firing. Pending registrations are dropped.

        Callbacks already running are left alone unless cancel_inflight
        is set, in which case they are cancelled and awaited.
        """
        if not self._running:
            return

        self._running = False
        dropped = len(self._registrations)
        self._registrations.clear()

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if cancel_inflight and self._inflight:
            tasks = list(self._inflight)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Scheduler stopped | dropped_registrations={}", dropped)

    # ============================================================
    # Registration
    # ============================================================

    def register_one_shot(
        self,
        instant: datetime,
        callback: FiringCallback,
        label: str = "",
    ) -> str:
        """
        Fire *callback* once at *instant*.

        Raises:
            ScheduleInPastError: instant is not after the current time.
            SchedulerEngineError: scheduler not started.
        """
        self._require_running()

        instant = _aware(instant)
        duration = instant - self._clock()
        if duration.total_seconds() <= 0:
            raise ScheduleInPastError(f"Scheduled time {instant.isoformat()} is in the past")

        reg = self._add(OneShot(at=instant), callback, label, next_run=instant)
        logger.info(
            "One-shot registered | {} at={} in={:.1f}s",
            reg.label,
            instant.isoformat(),
            duration.total_seconds(),
        )
        return reg.id

    def register_recurring(
        self,
        expression: str,
        callback: FiringCallback,
        label: str = "",
    ) -> str:
        """
        Fire *callback* on every match of *expression* until shutdown.

        Raises:
            InvalidScheduleError: croniter rejected the expression.
            SchedulerEngineError: scheduler not started.
        """
        self._require_running()

        next_run = next_cron_match(expression, self._clock())
        reg = self._add(Recurring(expression=expression), callback, label, next_run=next_run)
        logger.info(
            "Recurring registered | {} cron='{}' next={}",
            reg.label,
            expression,
            next_run.isoformat(),
        )
        return reg.id

    def _add(
        self,
        spec: ScheduleSpec,
        callback: FiringCallback,
        label: str,
        next_run: datetime,
    ) -> Registration:
        reg_id = f"reg-{next(self._ids)}"
        reg = Registration(
            id=reg_id,
            label=label or reg_id,
            spec=spec,
            callback=callback,
            next_run=next_run,
        )
        self._registrations[reg_id] = reg
        self._wakeup_event.set()
        return reg

    def _require_running(self) -> None:
        if not self._running:
            raise SchedulerEngineError("Scheduler is not running")

    # ============================================================
    # Scheduler Loop
    # ============================================================

    async def _scheduler_loop(self) -> None:
        try:
            while True:
                now = self._clock()

                for reg in self._due(now):
                    self._fire(reg, now)

                timeout = self._compute_sleep_interval(self._clock())
                try:
                    await asyncio.wait_for(self._wakeup_event.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
                finally:
                    self._wakeup_event.clear()

        except asyncio.CancelledError:
            pass

    def _due(self, now: datetime) -> list[Registration]:
        return [
            r for r in self._registrations.values()
            if r.next_run is not None and r.next_run <= now
        ]

    def _compute_sleep_interval(self, now: datetime) -> float:
        times = [r.next_run for r in self._registrations.values() if r.next_run]

        if not times:
            return self.tick_interval_s

        delay = (min(times) - now).total_seconds()
        return min(max(delay, 0.0), self.tick_interval_s)

    # ============================================================
    # Execution
    # ============================================================

    def _fire(self, reg: Registration, now: datetime) -> None:
        reg.runs += 1
        logger.debug("Firing | {} run={}", reg.label, reg.runs)

        task = asyncio.create_task(self._run_callback(reg))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

        if isinstance(reg.spec, OneShot):
            self._registrations.pop(reg.id, None)
            return

        try:
            reg.next_run = next_cron_match(reg.spec.expression, now)
        except InvalidScheduleError:
            logger.exception("Recurring registration dropped | {}", reg.label)
            self._registrations.pop(reg.id, None)

    @staticmethod
    async def _run_callback(reg: Registration) -> None:
        try:
            await reg.callback()
        except asyncio.CancelledError:
            logger.warning("Firing cancelled | {}", reg.label)
            raise
        except Exception:
            logger.exception("Firing failed | {}", reg.label)
