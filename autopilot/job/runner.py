"""
Job execution state machine.

Untriggered job:
    Running → evaluate → tasks → Success
                       ↘ no interval → Unsatisfied
                       ↘ interval    → sleep, evaluate again (unbounded)

Triggered job:
    register with the scheduler → Pending
    every firing: Running → evaluate once → Success | Unsatisfied

Every transition is written through the status store.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Optional

from loguru import logger

from autopilot.conditions.evaluator import LeafResolver, evaluate
from autopilot.conditions.probes import default_resolver
from autopilot.conditions.types import describe
from autopilot.errors import InvalidScheduleError, SchedulerEngineError
from autopilot.job.model import Job
from autopilot.scheduler.service import FiringCallback, SchedulerAdapter, next_cron_match
from autopilot.scheduler.trigger import resolve_when
from autopilot.scheduler.types import OneShot, Recurring
from autopilot.status.store import StatusStore
from autopilot.status.types import Status
from autopilot.tasks.shell import TaskRunner
from autopilot.utils.helpers import now_local


# ============================================================
# Context
# ============================================================

@dataclass(slots=True)
class JobContext:
    """Collaborators every job execution needs, passed explicitly."""

    store: StatusStore
    resolver: LeafResolver = field(default_factory=default_resolver)
    runner: TaskRunner = field(default_factory=TaskRunner)
    tz: Optional[tzinfo] = None
    writes: set[asyncio.Future] = field(default_factory=set, repr=False)

    def track(self, write: asyncio.Future) -> None:
        self.writes.add(write)
        write.add_done_callback(self.writes.discard)

    async def drain(self) -> None:
        """Wait for status writes still running in worker threads."""
        if self.writes:
            await asyncio.gather(*list(self.writes), return_exceptions=True)


# ============================================================
# Steps
# ============================================================

async def set_status(job: Job, status: Status, ctx: JobContext) -> None:
    """
    Persist a transition off the event loop.

    The write outlives a cancelled caller; JobContext.drain() waits for it.
    """
    job.status = status
    write = asyncio.ensure_future(
        asyncio.to_thread(ctx.store.set_status, job.id, job.name, status)
    )
    ctx.track(write)
    await asyncio.shield(write)


async def check_conditions(job: Job, ctx: JobContext) -> bool:
    """Evaluate the job's tree off the event loop; probes may block."""
    return await asyncio.to_thread(evaluate, job.condition, ctx.resolver)


async def _satisfied_then_execute(job: Job, ctx: JobContext) -> bool:
    if not await check_conditions(job, ctx):
        return False

    logger.info("Conditions met | {}", job.label)
    results = await ctx.runner.run_all(job.tasks, label=job.label)
    failed = sum(1 for r in results if not r.ok)

    await set_status(job, Status.SUCCESS, ctx)
    if failed:
        logger.warning("Job finished with {}/{} failed tasks | {}", failed, len(results), job.label)
    else:
        logger.success("Job finished | {}", job.label)
    return True


async def execute(job: Job, ctx: JobContext) -> Status:
    """
    Untriggered path: evaluate, then run tasks or poll.

    The poll loop has no ceiling; it ends when the condition holds or the
    task is cancelled.
    """
    await set_status(job, Status.RUNNING, ctx)
    logger.info("Job started | {} conditions={}", job.label, describe(job.condition))

    polls = 0
    while True:
        polls += 1
        if await _satisfied_then_execute(job, ctx):
            return job.status

        if job.check_interval_ms is None:
            await set_status(job, Status.UNSATISFIED, ctx)
            logger.info("Conditions not met | {}", job.label)
            return job.status

        logger.debug(
            "Conditions not met, retrying in {}ms | {} poll={}",
            job.check_interval_ms,
            job.label,
            polls,
        )
        await asyncio.sleep(job.check_interval_ms / 1000)


async def fire(job: Job, ctx: JobContext) -> Status:
    """One scheduled attempt: a single evaluation, no polling."""
    await set_status(job, Status.RUNNING, ctx)
    logger.info("Job fired | {}", job.label)

    if not await _satisfied_then_execute(job, ctx):
        await set_status(job, Status.UNSATISFIED, ctx)
        logger.info("Conditions not met | {}", job.label)
    return job.status


def firing_callback(job: Job, ctx: JobContext) -> FiringCallback:
    """Callback owning its own copy of the job."""
    snapshot = job.clone()

    async def _callback() -> None:
        await fire(snapshot, ctx)

    return _callback


async def schedule(job: Job, scheduler: SchedulerAdapter, ctx: JobContext) -> Optional[str]:
    """
    Triggered path: hand the job to the scheduler.

    Resolution errors are reported for this job only and leave its status
    untouched. Pending is written before registering and rolled back if
    the scheduler refuses the job.
    """
    if job.check_interval_ms is not None:
        logger.debug("check_interval ignored for triggered job | {}", job.label)

    try:
        spec = resolve_when(job.when, tz=ctx.tz)
        if isinstance(spec, Recurring):
            next_cron_match(spec.expression, now_local())
    except InvalidScheduleError as e:
        logger.error("Failed to schedule | {} err={}", job.label, e)
        return None

    # Pending must be queued ahead of the first firing's writes
    previous = job.status
    await set_status(job, Status.PENDING, ctx)

    try:
        callback = firing_callback(job, ctx)
        if isinstance(spec, OneShot):
            return scheduler.register_one_shot(spec.at, callback, label=job.label)
        return scheduler.register_recurring(spec.expression, callback, label=job.label)
    except (InvalidScheduleError, SchedulerEngineError) as e:
        logger.error("Failed to schedule | {} err={}", job.label, e)
        await set_status(job, previous, ctx)
        return None


# ============================================================
# Public API
# ============================================================

async def run(job: Job, scheduler: SchedulerAdapter, ctx: JobContext) -> None:
    """Run a job now, or schedule it when it carries a trigger."""
    if job.when is None:
        await execute(job, ctx)
    else:
        await schedule(job, scheduler, ctx)
