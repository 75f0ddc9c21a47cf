"""Tests for UnifiedScheduler dispatch, skipping and manual runs."""

from __future__ import annotations

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.utils.time import utc_now
from app.workers.unified_scheduler import JobStatus, UnifiedScheduler


@pytest.fixture()
def scheduler():
    sched = UnifiedScheduler(max_workers=2, check_interval_seconds=0.05)
    yield sched
    sched.shutdown(wait=True, timeout=5)


class TestRegistration:
    def test_scheduling_unknown_task_raises(self, scheduler):
        with pytest.raises(KeyError):
            scheduler.schedule_interval("nope", 10)
        with pytest.raises(KeyError):
            scheduler.run_now("nope")

    def test_interval_must_be_positive(self, scheduler):
        scheduler.register_task("t", lambda: None)
        with pytest.raises(ValueError):
            scheduler.schedule_interval("t", 0)

    def test_schedule_interval(self, scheduler):
        scheduler.register_task("sessions.reap_stale", lambda: None)
        job = scheduler.schedule_interval("sessions.reap_stale", 30, job_id="reaper")

        assert job.namespace == "sessions"
        assert scheduler.get_jobs() == [job]
        assert job.next_run > utc_now()


class TestRunNow:
    def test_success_is_recorded(self, scheduler):
        scheduler.register_task("t", lambda x: x * 2)
        result = scheduler.run_now("t", args=(21,))

        assert result.success
        assert result.result == 42
        assert scheduler.get_history()[0] is result

    def test_failure_is_captured(self, scheduler):
        def boom():
            raise RuntimeError("kaput")

        scheduler.register_task("t", boom)
        result = scheduler.run_now("t")

        assert result.status is JobStatus.FAILED
        assert result.error == "kaput"


class TestDispatch:
    def test_due_job_runs_and_advances(self, scheduler):
        done = threading.Event()
        task = MagicMock(side_effect=lambda: done.set())
        scheduler.register_task("t", task)
        job = scheduler.schedule_interval("t", 60, start_immediately=True)
        first_slot = job.next_run

        scheduler.start()
        assert done.wait(timeout=5)
        scheduler.stop(wait=True)

        task.assert_called_once()
        assert job.next_run == first_slot + timedelta(seconds=60)
        assert job.run_count == 1
        assert job.success_count == 1

    def test_missed_slots_are_not_replayed(self, scheduler):
        scheduler._executor = MagicMock()
        scheduler.register_task("t", lambda: None)
        job = scheduler.schedule_interval("t", 10, start_immediately=True)
        first_slot = job.next_run

        submitted = scheduler._dispatch_due(first_slot + timedelta(seconds=35))

        assert submitted == 1
        assert job.next_run == first_slot + timedelta(seconds=40)
        scheduler._executor = None

    def test_slot_is_skipped_while_previous_run_in_flight(self, scheduler):
        release = threading.Event()
        started = threading.Event()

        def slow():
            started.set()
            release.wait(timeout=5)

        scheduler.register_task("slow", slow)
        job = scheduler.schedule_interval("slow", 1, start_immediately=True)
        scheduler.start()
        try:
            assert started.wait(timeout=5)
            scheduler._dispatch_due(job.next_run + timedelta(milliseconds=1))
            assert job.skipped_count >= 1
        finally:
            release.set()
            scheduler.stop(wait=True)
        assert job.run_count == 1

    def test_disabled_job_is_not_dispatched(self, scheduler):
        scheduler._executor = MagicMock()
        scheduler.register_task("t", lambda: None)
        job = scheduler.schedule_interval("t", 10, start_immediately=True)
        scheduler.enable_job(job.job_id, False)

        assert scheduler._dispatch_due(job.next_run + timedelta(seconds=1)) == 0
        scheduler._executor = None

    def test_reenabled_job_resumes(self, scheduler):
        scheduler._executor = MagicMock()
        scheduler.register_task("t", lambda: None)
        job = scheduler.schedule_interval("t", 10, start_immediately=True)
        slot = job.next_run

        assert scheduler.enable_job(job.job_id, False)
        assert scheduler._dispatch_due(slot + timedelta(seconds=1)) == 0
        assert scheduler.enable_job(job.job_id)
        assert scheduler._dispatch_due(slot + timedelta(seconds=1)) == 1
        assert not scheduler.enable_job("missing", False)
        scheduler._executor = None


class TestStatus:
    def test_health_check_when_stopped(self, scheduler):
        assert scheduler.health_check()["health"] == "unhealthy"

    def test_status_lists_jobs(self, scheduler):
        scheduler.register_task("alerts.evaluate", lambda: None)
        scheduler.schedule_interval("alerts.evaluate", 60)
        status = scheduler.get_status()
        assert status["running"] is False
        assert status["tasks"] == ["alerts.evaluate"]
        assert status["jobs"][0]["namespace"] == "alerts"
