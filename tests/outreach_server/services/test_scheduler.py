# tests/outreach_server/services/test_scheduler.py
"""Test the scheduler engine: recovery, polling, concurrency and preference hooks."""
import logging
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from daily_outreach.conf import SchedulerConfig
from outreach_server.db.models import JobOutcome, JobStatus
from outreach_server.services.executor import JobExecutor
from outreach_server.services.scheduler import RESTART_NOTE, OutreachScheduler

NY_MON_WED_FRI = {
    "enabled": True,
    "schedule_days": ["mon", "wed", "fri"],
    "schedule_time": "09:00",
    "timezone": "America/New_York",
}
WEDNESDAY_9AM_NY = datetime(2024, 6, 5, 13, 0, tzinfo=timezone.utc)


@pytest.fixture
def executor():
    return MagicMock(spec=JobExecutor)


@pytest.fixture
def make_scheduler(job_store, preference_store, executor, clock):
    created = []

    def _make(**config):
        scheduler = OutreachScheduler(
            jobs=job_store,
            preferences=preference_store,
            executor=executor,
            config=SchedulerConfig(**config),
            clock=clock,
        )
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.stop(wait=True)


def _due_job(job_store, clock, user_id, minutes_ago=1):
    return job_store.upsert_schedule(user_id, clock() - timedelta(minutes=minutes_ago), clock())


class TestStartupRecovery:
    """Test recover_on_startup() and ensure_jobs_for_enabled_users()."""

    def test_running_jobs_are_rescheduled(self, make_scheduler, job_store, clock):
        """Every running job goes back to scheduled after a restart."""
        job = _due_job(job_store, clock, 1)
        job_store.mark_running(job.id, clock())

        recovered = make_scheduler().recover_on_startup()

        assert recovered == 1
        job = job_store.get_job(1)
        assert job.status == JobStatus.SCHEDULED.value
        assert job.last_error == RESTART_NOTE
        assert job.last_outcome == JobOutcome.RECOVERED.value
        assert job.retry_count == 0

    def test_creates_jobs_for_enabled_users(self, make_scheduler, job_store, preference_store):
        """Enabled users without a job get one; disabled users do not."""
        preference_store.upsert_preferences(1, NY_MON_WED_FRI)
        preference_store.upsert_preferences(2, dict(NY_MON_WED_FRI, enabled=False))

        created = make_scheduler().ensure_jobs_for_enabled_users()

        assert created == 1
        assert job_store.get_job(1).next_run_at == WEDNESDAY_9AM_NY
        assert job_store.get_job(2) is None

    def test_existing_exhausted_job_is_left_alone(self, make_scheduler, job_store, preference_store, clock):
        """Startup does not revive permanently failed jobs."""
        preference_store.upsert_preferences(1, NY_MON_WED_FRI)
        job = _due_job(job_store, clock, 1)
        job_store.mark_failed(job.id, clock(), 3, None, "Failed after 3 retries: boom", "")

        assert make_scheduler().ensure_jobs_for_enabled_users() == 0
        job = job_store.get_job(1)
        assert job.status == JobStatus.FAILED.value
        assert job.retry_count == 3


class TestStaleSweep:
    """Test sweep_stale()."""

    def test_only_old_running_jobs_are_reset(self, make_scheduler, job_store, clock):
        """Running longer than the threshold → scheduled; recent ones are untouched."""
        old = _due_job(job_store, clock, 1)
        job_store.mark_running(old.id, clock() - timedelta(minutes=10))
        recent = _due_job(job_store, clock, 2)
        job_store.mark_running(recent.id, clock() - timedelta(minutes=1))

        assert make_scheduler().sweep_stale() == 1

        old = job_store.get_job(1)
        assert old.status == JobStatus.SCHEDULED.value
        assert old.last_outcome == JobOutcome.RECOVERED.value
        assert old.last_error.startswith("Recovered stale running job")
        assert job_store.get_job(2).status == JobStatus.RUNNING.value


class TestPollOnce:
    """Test poll_once() dispatching."""

    def test_dispatches_due_jobs_only(self, make_scheduler, job_store, executor, clock):
        """Due jobs run; future jobs and exhausted failures do not."""
        _due_job(job_store, clock, 1)
        job_store.upsert_schedule(2, clock() + timedelta(hours=1), clock())
        exhausted = _due_job(job_store, clock, 3)
        job_store.mark_failed(exhausted.id, clock(), 3, None, "boom", "")

        scheduler = make_scheduler()
        assert scheduler.poll_once() == 1
        assert scheduler.pool.wait_idle(timeout=5)

        (call,) = executor.execute.call_args_list
        assert call[0][0].user_id == 1

    def test_retryable_failures_come_first(self, job_store, clock):
        """Retryable failed jobs are ordered before scheduled ones."""
        _due_job(job_store, clock, 1, minutes_ago=30)
        failed = _due_job(job_store, clock, 2, minutes_ago=5)
        job_store.mark_failed(failed.id, clock(), 1, clock() - timedelta(seconds=1), "boom", "")
        waiting = _due_job(job_store, clock, 3, minutes_ago=60)
        job_store.mark_failed(waiting.id, clock(), 1, clock() + timedelta(minutes=5), "boom", "")

        due = job_store.find_due_jobs(clock(), max_retries=3, limit=10)

        assert [job.user_id for job in due] == [2, 1]

    def test_respects_max_concurrent(self, make_scheduler, job_store, executor, clock):
        """With five due jobs and two slots, only two run until slots free up."""
        for user_id in range(1, 6):
            _due_job(job_store, clock, user_id)

        release = threading.Event()
        executor.execute.side_effect = lambda job: release.wait(5)
        scheduler = make_scheduler(max_concurrent=2)

        assert scheduler.poll_once() == 2
        assert scheduler.pool.running_count() == 2
        assert scheduler.poll_once() == 0

        release.set()
        assert scheduler.pool.wait_idle(timeout=5)
        assert scheduler.pool.running_count() == 0

    def test_batch_size_limits_dispatch(self, make_scheduler, job_store, executor, clock):
        """No more than batch_size jobs are taken per tick."""
        for user_id in range(1, 6):
            _due_job(job_store, clock, user_id)

        scheduler = make_scheduler(batch_size=3)
        assert scheduler.poll_once() == 3
        assert scheduler.pool.wait_idle(timeout=5)

    def test_running_user_is_not_dispatched_twice(self, make_scheduler, job_store, executor, clock):
        """A user whose job is still executing is skipped on the next tick."""
        _due_job(job_store, clock, 1)
        release = threading.Event()
        executor.execute.side_effect = lambda job: release.wait(5)
        scheduler = make_scheduler()

        assert scheduler.poll_once() == 1
        assert scheduler.poll_once() == 0

        release.set()
        assert scheduler.pool.wait_idle(timeout=5)
        assert executor.execute.call_count == 1

    def test_failing_job_does_not_affect_others(self, make_scheduler, job_store, executor, clock):
        """An exception escaping one execution leaves other jobs running."""
        _due_job(job_store, clock, 1, minutes_ago=2)
        _due_job(job_store, clock, 2, minutes_ago=1)

        def execute(job):
            if job.user_id == 1:
                raise RuntimeError("unexpected")

        executor.execute.side_effect = execute
        scheduler = make_scheduler()

        assert scheduler.poll_once() == 2
        assert scheduler.pool.wait_idle(timeout=5)
        assert {call[0][0].user_id for call in executor.execute.call_args_list} == {1, 2}
        assert scheduler.pool.running_count() == 0

    def test_start_runs_poll_loop(self, make_scheduler, job_store, preference_store, executor, clock):
        """start() recovers, creates jobs and then polls in the background."""
        preference_store.upsert_preferences(1, NY_MON_WED_FRI)
        job = _due_job(job_store, clock, 1)
        job_store.mark_running(job.id, clock())

        executed = threading.Event()
        executor.execute.side_effect = lambda job: executed.set()
        scheduler = make_scheduler(poll_interval_ms=10)

        scheduler.start()
        assert scheduler.is_running
        assert executed.wait(5)

        scheduler.stop()
        assert not scheduler.is_running


class TestPreferenceHooks:
    """Test update_user_preferences(), disable_user_outreach() and status helpers."""

    def test_update_creates_job(self, make_scheduler, job_store, preference_store):
        """Enabled preferences create a scheduled job at the next run."""
        prefs = preference_store.upsert_preferences(1, NY_MON_WED_FRI)

        make_scheduler().update_user_preferences(1, prefs)

        job = job_store.get_job(1)
        assert job.status == JobStatus.SCHEDULED.value
        assert job.next_run_at == WEDNESDAY_9AM_NY

    def test_update_revives_exhausted_job(self, make_scheduler, job_store, preference_store, clock):
        """Editing preferences resets the retry state of a failed job."""
        prefs = preference_store.upsert_preferences(1, NY_MON_WED_FRI)
        job = _due_job(job_store, clock, 1)
        job_store.mark_failed(job.id, clock(), 3, None, "Failed after 3 retries: boom", "")

        make_scheduler().update_user_preferences(1, prefs)

        job = job_store.get_job(1)
        assert job.status == JobStatus.SCHEDULED.value
        assert job.retry_count == 0
        assert job.next_retry_at is None
        assert job.last_error is None

    def test_update_with_disabled_preferences_deletes_job(self, make_scheduler, job_store, preference_store, clock):
        """Disabled preferences remove the job."""
        _due_job(job_store, clock, 1)
        prefs = preference_store.upsert_preferences(1, dict(NY_MON_WED_FRI, enabled=False))

        assert make_scheduler().update_user_preferences(1, prefs) is None
        assert job_store.get_job(1) is None

    def test_disable_without_job(self, make_scheduler, caplog):
        """Disabling a user without a job is a no-op and reports nothing."""
        with caplog.at_level(logging.INFO, logger="outreach_server.services.scheduler"):
            assert make_scheduler().disable_user_outreach(42) is False
        assert "Outreach disabled" not in caplog.text

    def test_disable_with_job(self, make_scheduler, job_store, clock, caplog):
        """Disabling removes the job and logs it once."""
        _due_job(job_store, clock, 7)
        with caplog.at_level(logging.INFO, logger="outreach_server.services.scheduler"):
            assert make_scheduler().disable_user_outreach(7) is True
        assert job_store.get_job(7) is None
        assert "Outreach disabled for user 7" in caplog.text

    def test_job_status(self, make_scheduler, job_store, clock):
        """Status includes minutes until the next run."""
        job_store.upsert_schedule(1, clock() + timedelta(minutes=90), clock())

        status = make_scheduler().get_job_status(1)

        assert status["status"] == JobStatus.SCHEDULED.value
        assert status["next_run_in_minutes"] == 90
        assert status["is_executing"] is False

    def test_job_status_missing(self, make_scheduler):
        """No job → None."""
        assert make_scheduler().get_job_status(1) is None

    def test_run_now(self, make_scheduler, job_store, executor, clock):
        """run_now() executes a job that is not due yet."""
        job_store.upsert_schedule(1, clock() + timedelta(days=2), clock())
        scheduler = make_scheduler()

        assert scheduler.run_now(1) is True
        assert scheduler.pool.wait_idle(timeout=5)
        executor.execute.assert_called_once()
        assert scheduler.run_now(2) is False
