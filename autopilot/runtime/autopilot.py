"""
AutoPilot daemon runtime.

Responsible for:
    - Loading job files and building jobs
    - Seeding the status snapshot
    - Running untriggered jobs and scheduling triggered ones, one task per job
    - Reload (SIGHUP) and shutdown (SIGINT / SIGTERM)
"""

from __future__ import annotations

import asyncio
import signal
from typing import Optional

from loguru import logger

from autopilot.conditions.evaluator import LeafResolver
from autopilot.conditions.probes import default_resolver
from autopilot.config.schema import Config
from autopilot.job.loader import load_jobs
from autopilot.job.model import Job
from autopilot.job.runner import JobContext, run
from autopilot.scheduler.service import SchedulerAdapter
from autopilot.status.store import StatusStore
from autopilot.status.types import Status
from autopilot.tasks.shell import TaskRunner


class AutoPilot:
    """
    Orchestrator owning the job table, the scheduler and per-job tasks.

    Jobs are recreated wholesale on reload; nothing carries over except
    the files on disk.
    """

    def __init__(self, config: Config, resolver: Optional[LeafResolver] = None):
        self.config = config
        self.paths = config.runtime_paths

        self.store = StatusStore(self.paths.status_file)
        self.context = JobContext(
            store=self.store,
            resolver=resolver or default_resolver(),
            runner=TaskRunner(
                timeout=config.tasks.timeout,
                working_dir=config.tasks.working_dir,
                shell=config.tasks.shell,
            ),
        )

        self.scheduler = self._new_scheduler()
        self.jobs: dict[str, Job] = {}

        self._handles: dict[str, asyncio.Task] = {}
        self._running = False
        self._stopped: Optional[asyncio.Event] = None
        self._lifecycle_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------
    # Lifecycle API
    # ------------------------------------------------------------

    async def start(self) -> None:
        async with self._lifecycle_lock:
            await self._start()

    async def stop(self, reset_status: Optional[bool] = None) -> None:
        async with self._lifecycle_lock:
            await self._stop(reset_status)
            if self._stopped is not None:
                self._stopped.set()

    async def reload(self) -> None:
        async with self._lifecycle_lock:
            if not self._running:
                return
            logger.info("Reloading AutoPilot...")
            await self._stop(reset_status=False)
            self.scheduler = self._new_scheduler()
            await self._start()
            logger.success("AutoPilot reloaded | jobs={}", len(self.jobs))

    async def serve(self) -> None:
        """Start, then block until a stop signal arrives."""
        self._stopped = asyncio.Event()
        await self.start()
        self._install_signal_handlers()

        try:
            await self._stopped.wait()
        finally:
            self._remove_signal_handlers()
            if self._running:
                await self.stop()

    async def wait(self) -> None:
        """Wait for every per-job task spawned so far."""
        if self._handles:
            await asyncio.gather(*self._handles.values(), return_exceptions=True)

    # ------------------------------------------------------------
    # Internals (lifecycle lock held)
    # ------------------------------------------------------------

    async def _start(self) -> None:
        if self._running:
            return

        self.paths.ensure()
        self.load_jobs()

        await asyncio.to_thread(
            self.store.initialize,
            [(job.id, job.name) for job in self.jobs.values()],
        )
        await self.scheduler.start()

        for job in self.jobs.values():
            self._spawn(job)

        self._running = True
        logger.success("AutoPilot served | jobs={} root={}", len(self.jobs), self.paths.root)

    async def _stop(self, reset_status: Optional[bool] = None) -> None:
        if not self._running:
            return

        logger.warning("Stopping jobs...")
        self._running = False

        await self._cancel_jobs()
        await self.scheduler.shutdown(cancel_inflight=True)
        # writes from cancelled jobs must land before reset or re-seeding
        await self.context.drain()

        if reset_status is None:
            reset_status = self.config.daemon.shutdown_reset_status
        if reset_status:
            await asyncio.to_thread(self.store.reset, Status.UNKNOWN)

        self.jobs = {}
        logger.info("AutoPilot stopped")

    def load_jobs(self) -> list[Job]:
        jobs = load_jobs(self.paths.jobs_dir)
        self.jobs = {job.id: job for job in jobs}
        return jobs

    def _spawn(self, job: Job) -> asyncio.Task:
        task = asyncio.create_task(
            run(job, self.scheduler, self.context),
            name=f"job:{job.id}",
        )
        task.add_done_callback(self._on_job_done)
        self._handles[job.id] = task
        return task

    @staticmethod
    def _on_job_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Job task crashed | {}", task.get_name())

    async def _cancel_jobs(self) -> None:
        handles = list(self._handles.values())
        self._handles = {}

        for task in handles:
            if not task.done():
                task.cancel()
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)

    def _new_scheduler(self) -> SchedulerAdapter:
        return SchedulerAdapter(tick_interval_s=self.config.daemon.tick_interval_s)

    # ------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        handlers = {
            signal.SIGINT: self._request_stop,
            signal.SIGTERM: self._request_stop,
        }
        if hasattr(signal, "SIGHUP"):
            handlers[signal.SIGHUP] = self._request_reload

        for sig, handler in handlers.items():
            try:
                loop.add_signal_handler(sig, handler, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handler unavailable | {}", sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for name in ("SIGINT", "SIGTERM", "SIGHUP"):
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    def _request_stop(self, sig: signal.Signals) -> None:
        logger.info("Received {}, shutting down...", signal.Signals(sig).name)
        asyncio.get_running_loop().create_task(self.stop())

    def _request_reload(self, sig: signal.Signals) -> None:
        logger.info("Received {}, reloading...", signal.Signals(sig).name)
        asyncio.get_running_loop().create_task(self.reload())
