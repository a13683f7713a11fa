"""Cancellable periodic job scheduler built on asyncio tasks."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass
class Job:
    """A named periodic job."""

    name: str
    func: JobFunc
    interval: float  # seconds
    runs: int = 0
    failures: int = 0
    last_run: datetime | None = None
    last_error: str | None = None
    task: asyncio.Task | None = field(default=None, repr=False)


class Scheduler:
    """Owns background jobs and cancels all of them on shutdown."""

    def __init__(self):
        self.jobs: dict[str, Job] = {}
        self._running = False

    def add_job(self, name: str, func: JobFunc, interval: float) -> None:
        """Register a periodic job.

        Args:
            name: Unique job name
            func: Coroutine function to run
            interval: Seconds between runs (first run after one interval)
        """
        if name in self.jobs:
            raise ValueError(f"Job already registered: {name}")
        job = Job(name=name, func=func, interval=interval)
        self.jobs[name] = job
        if self._running:
            job.task = asyncio.create_task(self._loop(job), name=f"scheduler:{name}")

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for job in self.jobs.values():
            job.task = asyncio.create_task(self._loop(job), name=f"scheduler:{job.name}")
        logger.info(f"Scheduler started with {len(self.jobs)} jobs")

    async def run_now(self, name: str) -> None:
        """Run a job immediately, outside its schedule."""
        await self._run_once(self.jobs[name])

    async def _loop(self, job: Job) -> None:
        while True:
            await asyncio.sleep(job.interval)
            await self._run_once(job)

    async def _run_once(self, job: Job) -> None:
        try:
            await job.func()
            job.runs += 1
            job.last_run = datetime.now(UTC)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # A failing job must not kill its loop
            job.failures += 1
            job.last_error = str(e)
            logger.error(f"Scheduled job {job.name} failed: {e}", exc_info=True)

    async def shutdown(self) -> None:
        """Cancel every job and wait for the tasks to finish."""
        self._running = False
        tasks = [job.task for job in self.jobs.values() if job.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for job in self.jobs.values():
            job.task = None
        logger.info("Scheduler stopped")

    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "interval": job.interval,
                "runs": job.runs,
                "failures": job.failures,
                "last_run": job.last_run.isoformat() if job.last_run else None,
                "last_error": job.last_error,
                "active": job.task is not None and not job.task.done(),
            }
            for name, job in self.jobs.items()
        }
