"""Fixed-interval job scheduler for the indexer loops.

Each job runs in its own task on a fixed tick grid. A run that overruns its
interval makes the scheduler skip the missed ticks rather than queue them,
so at most one run of a job is ever in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


class SchedulerState(str, Enum):
    """Scheduler lifecycle states."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class JobStats:
    """Statistics for one scheduled job."""

    runs: int = 0
    failures: int = 0
    skipped_ticks: int = 0
    last_run_at: datetime | None = None
    last_duration_seconds: float = 0.0
    last_error: str | None = None


@dataclass
class _Job:
    name: str
    func: JobFunc
    interval_seconds: float
    run_immediately: bool = True
    stats: JobStats = field(default_factory=JobStats)
    task: asyncio.Task[None] | None = None


class IndexerScheduler:
    """Runs registered coroutine jobs on fixed intervals.

    Example:
        ```python
        scheduler = IndexerScheduler()
        scheduler.add_job("scan:97", indexer.run_cycle, interval_seconds=5)
        await scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        shutdown_grace_seconds: float = 10.0,
    ) -> None:
        self._clock = clock
        self._grace = shutdown_grace_seconds
        self._jobs: dict[str, _Job] = {}
        self._state = SchedulerState.STOPPED
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def stats(self) -> dict[str, JobStats]:
        return {name: job.stats for name, job in self._jobs.items()}

    def add_job(
        self,
        name: str,
        func: JobFunc,
        interval_seconds: float,
        *,
        run_immediately: bool = True,
    ) -> None:
        if name in self._jobs:
            raise ValueError(f"Job {name!r} already registered")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        job = _Job(name=name, func=func, interval_seconds=interval_seconds, run_immediately=run_immediately)
        self._jobs[name] = job
        if self._state == SchedulerState.RUNNING:
            job.task = asyncio.create_task(self._job_loop(job), name=f"job:{name}")

    async def start(self) -> None:
        if self._state != SchedulerState.STOPPED:
            logger.warning("Cannot start scheduler: already in state %s", self._state)
            return
        self._stop_event.clear()
        for job in self._jobs.values():
            job.task = asyncio.create_task(self._job_loop(job), name=f"job:{job.name}")
        self._state = SchedulerState.RUNNING
        logger.info("Scheduler started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Signal every loop, wait for in-flight runs, then cancel stragglers."""
        if self._state == SchedulerState.STOPPED:
            return
        self._state = SchedulerState.STOPPING
        self._stop_event.set()

        tasks = [job.task for job in self._jobs.values() if job.task is not None]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._grace)
            for task in pending:
                logger.warning("Cancelling %s after %.1fs shutdown grace", task.get_name(), self._grace)
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        for job in self._jobs.values():
            job.task = None

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    async def _wait(self, delay: float) -> bool:
        """Sleep until the next tick; True when stop was requested."""
        if delay <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except TimeoutError:
            return self._stop_event.is_set()

    async def _run_job(self, job: _Job) -> None:
        started = self._clock()
        job.stats.runs += 1
        job.stats.last_run_at = datetime.now(UTC)
        try:
            await job.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.stats.failures += 1
            job.stats.last_error = str(e)
            logger.exception("Job %s failed", job.name)
        finally:
            job.stats.last_duration_seconds = self._clock() - started

    async def _job_loop(self, job: _Job) -> None:
        interval = job.interval_seconds
        next_tick = self._clock() + (0 if job.run_immediately else interval)
        while not self._stop_event.is_set():
            if await self._wait(next_tick - self._clock()):
                break

            await self._run_job(job)

            next_tick += interval
            finished = self._clock()
            if finished > next_tick:
                skipped = int((finished - next_tick) // interval) + 1
                job.stats.skipped_ticks += skipped
                next_tick += skipped * interval
                logger.warning(
                    "Job %s overran its %.1fs interval; skipped %d tick(s)",
                    job.name,
                    interval,
                    skipped,
                )
