"""
Shell task execution.

Runs a job's commands one after another through the system shell,
each bounded by a timeout. A failing command is reported and the
sequence moves on.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from autopilot.errors import TaskExecutionError
from autopilot.utils.helpers import truncate


DEFAULT_TIMEOUT_S = 3600
MAX_OUTPUT_CHARS = 10_000


@dataclass(frozen=True, slots=True)
class Task:
    """A single opaque shell command."""

    command: str


@dataclass(slots=True)
class TaskResult:
    command: str
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0


class TaskRunner:
    """
    Execute shell commands with a per-command timeout.
    """

    def __init__(
        self,
        *,
        timeout: int = DEFAULT_TIMEOUT_S,
        working_dir: str | None = None,
        shell: str | None = None,
    ) -> None:
        self.timeout = timeout
        self.working_dir = working_dir
        self.shell = shell

    async def run(self, task: Task) -> TaskResult:
        """
        Execute one command and capture its outcome.

        Never raises for process-level failures; those land in
        TaskResult.error / returncode.
        """
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_shell(
                task.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_dir,
                executable=self.shell,
            )
        except Exception as e:
            return TaskResult(
                command=task.command,
                returncode=None,
                duration_s=time.monotonic() - start,
                error=f"failed to spawn: {e}",
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return TaskResult(
                command=task.command,
                returncode=process.returncode,
                duration_s=time.monotonic() - start,
                error=f"timed out after {self.timeout} seconds",
            )
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise

        return TaskResult(
            command=task.command,
            returncode=process.returncode,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            duration_s=time.monotonic() - start,
        )

    async def run_all(self, tasks: Sequence[Task], label: str = "") -> list[TaskResult]:
        """
        Run tasks strictly in order; task N+1 starts after task N exits.

        Failures are logged as TaskExecutionError and do not stop the sequence.
        """
        results: list[TaskResult] = []

        for index, task in enumerate(tasks, start=1):
            logger.debug("Task {}/{} | {} $ {}", index, len(tasks), label, task.command)
            result = await self.run(task)
            results.append(result)

            if result.ok:
                logger.info(
                    "Task ok | {} #{} ({:.2f}s)",
                    label,
                    index,
                    result.duration_s,
                )
                continue

            err = TaskExecutionError(task.command, result.returncode, result.error or "")
            logger.error("{} | {} #{}", err, label, index)
            if result.stderr:
                logger.debug("stderr | {}", truncate(result.stderr.strip(), 500))

        return results


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    text = data.decode("utf-8", errors="replace")
    if len(text) > MAX_OUTPUT_CHARS:
        text = text[:MAX_OUTPUT_CHARS] + f"\n... (truncated, {len(text) - MAX_OUTPUT_CHARS} more chars)"
    return text
