"""Tests for the scheduled task definitions and their registration."""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app.workers.scheduled_tasks import (
    ALERTS_EVALUATE,
    SESSIONS_REAP_STALE,
    alerts_evaluate_task,
    configure_scheduler,
    register_all_tasks,
    sessions_reap_stale_task,
)
from app.workers.unified_scheduler import UnifiedScheduler


@pytest.fixture()
def container():
    c = MagicMock()
    c.config = SimpleNamespace(
        session_stale_minutes=15,
        alert_eval_interval_seconds=60,
        session_reaper_interval_seconds=300,
    )
    c.alert_evaluation_service.evaluate_all.return_value = {
        "site-1": SimpleNamespace(fired=2, cleared=1, errors=0),
        "site-2": SimpleNamespace(fired=0, cleared=0, errors=1),
    }
    c.ingest_service.reap_stale.return_value = 3
    return c


def test_alerts_evaluate_task_totals(container):
    assert alerts_evaluate_task(container) == {"sites": 2, "fired": 2, "cleared": 1, "errors": 1}


def test_sessions_reap_stale_task_uses_configured_threshold(container):
    assert sessions_reap_stale_task(container) == {"closed": 3}
    container.ingest_service.reap_stale.assert_called_once_with(timedelta(minutes=15))


def test_register_all_tasks_binds_container(container):
    scheduler = UnifiedScheduler()
    register_all_tasks(scheduler, container)

    assert {ALERTS_EVALUATE, SESSIONS_REAP_STALE} <= set(scheduler.get_status()["tasks"])
    result = scheduler.run_now(SESSIONS_REAP_STALE)
    assert result.success
    assert result.result == {"closed": 3}


def test_configure_scheduler_without_start(container):
    scheduler = UnifiedScheduler()
    configure_scheduler(scheduler, container, start=False)

    jobs = {job.job_id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {"alerts_evaluate", "sessions_reap_stale"}
    assert jobs["alerts_evaluate"].interval_seconds == 60
    assert jobs["sessions_reap_stale"].interval_seconds == 300
    assert not scheduler.is_running()
