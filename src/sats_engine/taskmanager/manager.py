"""Periodic job runner for the engine's background work.

Each registered ``CronJob`` gets its own asyncio task that awaits the
handler every ``period`` seconds. A job may also run once as soon as the
manager starts, which the pending-spend sweep uses to clean up after a
crash. Handler failures are logged, counted in the job's ``JobStatus`` and
retried on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronJob:
    """A recurring background job.

    Attributes:
        handler: Coroutine function awaited on every tick.
        period: Seconds between ticks.
        run_at_start: Also run once immediately when the manager starts.
        name: Filled in by :meth:`TaskManager.register`.
    """

    handler: Callable[[], Awaitable[None]]
    period: float
    run_at_start: bool = False
    name: str = ""


@dataclass
class JobStatus:
    """Run bookkeeping for one job."""

    runs: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = None


class TaskManager:
    """Runs registered cron jobs on asyncio tasks.

    Usage::

        tm = TaskManager()
        tm.register("sweep_pending_spends", CronJob(handler=sweep, period=120, run_at_start=True))
        await tm.start()
        ...
        await tm.stop()
    """

    def __init__(self) -> None:
        self._jobs: dict[str, CronJob] = {}
        self._status: dict[str, JobStatus] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> dict[str, CronJob]:
        return dict(self._jobs)

    def status(self, name: str) -> JobStatus:
        """Run bookkeeping for *name*.

        Raises:
            KeyError: No job registered under *name*.
        """
        return self._status[name]

    def register(self, name: str, job: CronJob) -> None:
        """Add *job* under *name*, starting it right away if the manager runs.

        Raises:
            ValueError: The period is not positive.
        """
        if job.period <= 0:
            msg = f"Cron job {name!r} needs a positive period, got {job.period}"
            raise ValueError(msg)
        named = CronJob(handler=job.handler, period=job.period, run_at_start=job.run_at_start, name=name)
        self._jobs[name] = named
        self._status.setdefault(name, JobStatus())
        if self._running:
            self._spawn(named)

    async def run_now(self, name: str) -> None:
        """Run one job immediately, outside its schedule.

        Unlike scheduled ticks, a failing handler propagates to the caller.
        """
        job = self._jobs.get(name)
        if job is None:
            msg = f"Unknown cron job {name!r}"
            raise KeyError(msg)
        await self._execute(job, reraise=True)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for job in self._jobs.values():
            self._spawn(job)
        logger.info("TaskManager started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Cancel every job task and wait for them to unwind."""
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for result in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error("Cron task ended with an error during shutdown: %s", result)
        logger.info("TaskManager stopped")

    def _spawn(self, job: CronJob) -> None:
        self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"cron:{job.name}")

    async def _loop(self, job: CronJob) -> None:
        if job.run_at_start:
            await self._execute(job)
        while self._running:
            await asyncio.sleep(job.period)
            if not self._running:
                break
            await self._execute(job)

    async def _execute(self, job: CronJob, *, reraise: bool = False) -> None:
        status = self._status[job.name]
        status.runs += 1
        status.last_run_at = datetime.now(UTC)
        try:
            await job.handler()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            status.failures += 1
            status.last_error = str(exc)
            if reraise:
                raise
            logger.exception("Cron job %r failed", job.name)
        else:
            status.last_error = None
