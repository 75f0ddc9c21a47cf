"""Tests for the standalone scheduler command-line helpers."""

from __future__ import annotations

import logging

import pytest

from app.workers.scheduled_tasks import ALERTS_EVALUATE
from app.workers.scheduler_cli import build_parser, disable_jobs, log_health
from app.workers.unified_scheduler import UnifiedScheduler


@pytest.fixture()
def scheduler():
    sched = UnifiedScheduler(max_workers=1, check_interval_seconds=0.05)
    sched.register_task(ALERTS_EVALUATE, lambda: {"rules": 0})
    sched.schedule_interval(ALERTS_EVALUATE, 60, job_id="alerts_evaluate")
    yield sched
    sched.shutdown(wait=True, timeout=5)


def test_parser_modes_are_exclusive():
    parser = build_parser()
    args = parser.parse_args(["--disable", "alerts_evaluate", "--disable", "x", "--health-interval", "5"])
    assert args.disable == ["alerts_evaluate", "x"]
    assert args.health_interval == 5.0

    with pytest.raises(SystemExit):
        parser.parse_args(["--status", "--once", ALERTS_EVALUATE])


def test_disable_jobs_reports_unknown_ids(scheduler, caplog):
    with caplog.at_level(logging.WARNING, logger="app.workers.scheduler_cli"):
        unknown = disable_jobs(scheduler, ["alerts_evaluate", "nope"])

    assert unknown == ["nope"]
    assert scheduler.get_status()["enabled_jobs"] == 0
    assert "nope" in caplog.text


def test_log_health_names_the_last_failure(scheduler, caplog):
    def boom():
        raise RuntimeError("db locked")

    scheduler.register_task("sessions.reap_stale", boom)
    scheduler.run_now("sessions.reap_stale")

    with caplog.at_level(logging.WARNING, logger="app.workers.scheduler_cli"):
        health = log_health(scheduler)

    assert health["health"] == "unhealthy"
    assert "sessions.reap_stale:manual: db locked" in caplog.text
