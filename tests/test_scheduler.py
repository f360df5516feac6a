"""Tests for the daily job scheduler."""
import asyncio
import threading
from datetime import datetime, timedelta, timezone

from core.scheduler import JobScheduler, compute_next_run

MORNING = datetime(2025, 3, 1, 6, 0, tzinfo=timezone.utc)


def test_next_run_later_today():
    assert compute_next_run("08:00", MORNING) == "2025-03-01T08:00:00+00:00"


def test_next_run_tomorrow_when_time_has_passed():
    assert compute_next_run("05:30", MORNING) == "2025-03-02T05:30:00+00:00"
    assert compute_next_run("06:00", MORNING) == "2025-03-02T06:00:00+00:00"


def test_malformed_time_falls_back_to_eight():
    assert compute_next_run("noon", MORNING) == "2025-03-01T08:00:00+00:00"


def test_run_due_fires_once_and_reschedules():
    calls = []
    scheduler = JobScheduler()
    job = scheduler.add_daily_job("sweep", lambda: calls.append(1), "08:00", now=MORNING)

    assert scheduler.run_due(MORNING) == []
    fired = scheduler.run_due(MORNING + timedelta(hours=2))
    assert fired == [job]
    assert calls == [1]
    assert job.run_count == 1
    assert job.next_run_at == "2025-03-02T08:00:00+00:00"
    assert scheduler.run_due(MORNING + timedelta(hours=3)) == []


def test_failing_job_is_logged_and_rescheduled():
    def boom():
        raise RuntimeError("smtp down")

    scheduler = JobScheduler()
    job = scheduler.add_daily_job("sweep", boom, "08:00", now=MORNING)
    fired = scheduler.run_due(MORNING + timedelta(hours=2))

    assert fired == [job]
    assert job.last_error == "smtp down"
    assert job.next_run_at == "2025-03-02T08:00:00+00:00"


def test_disabled_job_does_not_fire():
    scheduler = JobScheduler()
    job = scheduler.add_daily_job("sweep", lambda: None, "08:00", now=MORNING)
    job.enabled = False
    assert scheduler.run_due(MORNING + timedelta(days=1)) == []


def test_run_loop_fires_jobs_off_the_event_loop_thread():
    scheduler = JobScheduler(check_interval=0)
    threads = []

    def job():
        threads.append(threading.get_ident())
        scheduler.stop()

    # scheduled against a past "now", so it is already due
    scheduler.add_daily_job("sweep", job, "08:00", now=MORNING)

    async def main():
        loop_thread = threading.get_ident()
        await asyncio.wait_for(scheduler.run(), timeout=5)
        return loop_thread

    loop_thread = asyncio.run(main())
    assert len(threads) == 1
    assert threads[0] != loop_thread
