from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from app.core.clock import Clock, now_ms

Job = Callable[[], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class ScheduledJob:
    name: str
    interval_ms: int
    job: Job
    next_run_ms: int | None = None
    runs: int = 0
    failures: int = 0


class IntervalScheduler:
    """Run async jobs at fixed intervals on the current event loop.

    ``run_pending`` executes every due job once and is what the background
    loop calls on each tick; tests call it directly with a fake clock.
    A job that raises is logged and rescheduled, never fatal to the loop.
    """

    def __init__(
        self,
        *,
        clock: Clock = now_ms,
        sleep: SleepFn = asyncio.sleep,
        resolution_seconds: float = 0.25,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._resolution = resolution_seconds
        self._jobs: list[ScheduledJob] = []
        self._task: asyncio.Task[None] | None = None

    @property
    def jobs(self) -> tuple[ScheduledJob, ...]:
        return tuple(self._jobs)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def every(self, seconds: float, job: Job, *, name: str | None = None) -> ScheduledJob:
        if seconds <= 0:
            raise ValueError("interval must be positive")
        scheduled = ScheduledJob(
            name=name or getattr(job, "__name__", "job"),
            interval_ms=int(seconds * 1000),
            job=job,
        )
        self._jobs.append(scheduled)
        return scheduled

    async def run_pending(self) -> int:
        """Run every due job sequentially; returns how many ran."""

        ran = 0
        for scheduled in list(self._jobs):
            now = self._clock()
            if scheduled.next_run_ms is not None and now < scheduled.next_run_ms:
                continue
            scheduled.next_run_ms = now + scheduled.interval_ms
            scheduled.runs += 1
            ran += 1
            try:
                await scheduled.job()
            except Exception:
                scheduled.failures += 1
                logger.exception("Scheduled job {} failed", scheduled.name)
        return ran

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Scheduler started with jobs {}", [job.name for job in self._jobs])

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await self.run_pending()
            await self._sleep(self._resolution)
