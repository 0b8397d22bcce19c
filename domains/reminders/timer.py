"""Delayed-task core on top of APScheduler.

Every "fire later" in the engine goes through here: reminder due times,
escalation re-checks and batch flushes. Jobs are keyed by id so re-arming
replaces the old job and cancellation is a first-class operation.

Firing is "due, not earlier": a past run time fires on the next loop
iteration, and the periodic due-sweep covers timers lost to a restart.
"""

from datetime import datetime, timezone
from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger


class Timer:
    """Thin wrapper around an AsyncIOScheduler."""

    def __init__(self, scheduler: AsyncIOScheduler, clock: Callable[[], datetime] = None):
        self.scheduler = scheduler
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def schedule_at(self, job_id: str, run_at: datetime, func: Callable, *args: Any) -> str:
        """Run `func(*args)` at `run_at`, or as soon as possible if it has passed.

        Args:
            job_id: Stable id; an existing job with the same id is replaced
            run_at: Aware datetime
            func: Sync or async callable

        Returns:
            The job id
        """
        now = self._clock()
        run_date = run_at if run_at > now else now

        self.scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_date),
            args=list(args),
            id=job_id,
            name=job_id,
            replace_existing=True,
            misfire_grace_time=None,  # late is fine, never skip
        )
        logger.debug(f"Scheduled {job_id} at {run_date.isoformat()}")
        return job_id

    def every(self, job_id: str, seconds: int, func: Callable, *args: Any) -> str:
        """Run `func(*args)` every `seconds` seconds."""
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            args=list(args),
            id=job_id,
            name=job_id,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"Registered periodic job {job_id} (every {seconds}s)")
        return job_id

    def cancel(self, job_id: str) -> bool:
        """Remove a scheduled job.

        Returns:
            True if a job was removed, False if none was scheduled
        """
        try:
            self.scheduler.remove_job(job_id)
            logger.debug(f"Cancelled {job_id}")
            return True
        except JobLookupError:
            return False

    def is_scheduled(self, job_id: str) -> bool:
        return self.scheduler.get_job(job_id) is not None

    def pause(self) -> None:
        self.scheduler.pause()

    def resume(self) -> None:
        self.scheduler.resume()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
