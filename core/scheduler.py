"""
Warranty Tracker Job Scheduler

Runs in-process jobs once per day at a fixed HH:MM UTC. The expiration
sweep is the only job registered today; the scheduler itself knows nothing
about it beyond the callable it is given.

Usage:
    from core.scheduler import JobScheduler

    scheduler = JobScheduler(check_interval=60)
    scheduler.add_daily_job("Expiration sweep", sweep.run_sweep, run_at_time="08:00")
    await scheduler.run()   # background loop
    scheduler.stop()
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Callable


logger = logging.getLogger("tracker.scheduler")

DEFAULT_RUN_AT = "08:00"


# ---------------------------------------------------------------------------
# DailyJob dataclass
# ---------------------------------------------------------------------------

@dataclass
class DailyJob:
    """A callable that fires once per day.

    Attributes:
        job_id:      Unique identifier (UUID string)
        name:        Human-readable job name
        func:        Zero-argument callable run when due
        run_at_time: HH:MM string (UTC)
        next_run_at: When this job next fires (ISO string or None)
        last_run_at: When this job last fired (ISO string or None)
        last_error:  Message of the last failure, '' after a clean run
        enabled:     Whether the job is active
        run_count:   How many times this job has fired
    """
    name: str
    func: Callable[[], Any]
    run_at_time: str = DEFAULT_RUN_AT
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    next_run_at: str | None = None
    last_run_at: str | None = None
    last_error: str = ""
    enabled: bool = True
    run_count: int = 0

    @property
    def short_id(self) -> str:
        return self.job_id[:8]

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "name": self.name,
            "run_at_time": self.run_at_time,
            "next_run_at": self.next_run_at,
            "last_run_at": self.last_run_at,
            "last_error": self.last_error,
            "enabled": self.enabled,
            "run_count": self.run_count,
        }


def compute_next_run(run_at_time: str, now: datetime | None = None) -> str:
    """Next occurrence of HH:MM UTC strictly after ``now``.

    Malformed times fall back to 08:00.
    """
    now = now or datetime.now(timezone.utc)
    try:
        hour, minute = map(int, run_at_time.split(":"))
        target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    except (ValueError, AttributeError):
        logger.warning("Invalid run_at_time %r, using %s", run_at_time, DEFAULT_RUN_AT)
        target = now.replace(hour=8, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target.isoformat()


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class JobScheduler:
    """Holds daily jobs and fires them from a background loop.

    Args:
        check_interval: Seconds between due checks in the run loop.
    """

    def __init__(self, check_interval: int = 60):
        self._check_interval = check_interval
        self._jobs: dict[str, DailyJob] = {}
        self._running = False

    def add_daily_job(
        self,
        name: str,
        func: Callable[[], Any],
        run_at_time: str = DEFAULT_RUN_AT,
        now: datetime | None = None,
    ) -> DailyJob:
        job = DailyJob(name=name, func=func, run_at_time=run_at_time)
        job.next_run_at = compute_next_run(run_at_time, now)
        self._jobs[job.job_id] = job
        logger.info("Job scheduled: '%s' (%s) next=%s", name, job.short_id, job.next_run_at)
        return job

    def list_all(self) -> list[DailyJob]:
        return list(self._jobs.values())

    def run_due(self, now: datetime | None = None) -> list[DailyJob]:
        """Run every enabled job whose next_run_at has passed.

        A failing job is logged and rescheduled like a successful one.
        """
        now = now or datetime.now(timezone.utc)
        fired = []

        for job in self._jobs.values():
            if not job.enabled or not job.next_run_at:
                continue
            try:
                next_run = datetime.fromisoformat(job.next_run_at)
            except (ValueError, TypeError):
                continue
            if next_run > now:
                continue

            job.run_count += 1
            job.last_run_at = now.isoformat()
            logger.info("Job '%s' (%s) fired (run #%d)", job.name, job.short_id, job.run_count)
            try:
                job.func()
                job.last_error = ""
            except Exception as e:
                job.last_error = str(e)
                logger.exception("Job '%s' (%s) failed", job.name, job.short_id)
            job.next_run_at = compute_next_run(job.run_at_time, now)
            fired.append(job)

        return fired

    async def run(self):
        """Background loop: check for due jobs every check_interval seconds.

        Jobs block (SQLite, SMTP), so each tick runs in a worker thread and
        the event loop keeps serving requests.
        """
        self._running = True
        logger.info(
            "Scheduler started (check every %ds, %d job(s))",
            self._check_interval, len(self._jobs),
        )

        while self._running:
            await asyncio.sleep(self._check_interval)
            if not self._running:
                break
            try:
                await asyncio.to_thread(self.run_due)
            except Exception as e:
                logger.error("Scheduler tick error: %s", e)

    def stop(self):
        """Signal the background loop to exit."""
        self._running = False
        logger.info("Scheduler stopped")
