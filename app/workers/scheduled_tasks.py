"""
Scheduled Tasks: background task definitions for the UnifiedScheduler.

Namespaces:
- alerts.*: Periodic alert rule evaluation
- sessions.*: Ingestion session housekeeping

Usage:
    from app.workers.scheduled_tasks import configure_scheduler

    configure_scheduler(container.scheduler, container)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from app.services.container import ServiceContainer
    from app.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)

ALERTS_EVALUATE = "alerts.evaluate"
SESSIONS_REAP_STALE = "sessions.reap_stale"


# ==================== Alerts Namespace ====================


def alerts_evaluate_task(container: "ServiceContainer") -> dict[str, Any]:
    """
    Evaluate active alert rules for every site that has any.

    Each site runs in isolation; a failing site is logged and the sweep
    continues with the next one.
    """
    service = container.alert_evaluation_service
    summaries = service.evaluate_all()
    totals = {"sites": len(summaries), "fired": 0, "cleared": 0, "errors": 0}
    for summary in summaries.values():
        totals["fired"] += summary.fired
        totals["cleared"] += summary.cleared
        totals["errors"] += summary.errors
    if totals["fired"] or totals["cleared"] or totals["errors"]:
        logger.info(
            "Alert sweep: %d sites, %d fired, %d cleared, %d pair errors",
            totals["sites"],
            totals["fired"],
            totals["cleared"],
            totals["errors"],
        )
    return totals


# ==================== Sessions Namespace ====================


def sessions_reap_stale_task(container: "ServiceContainer") -> dict[str, Any]:
    """Close ingestion sessions that stopped sending heartbeats."""
    threshold = timedelta(minutes=container.config.session_stale_minutes)
    closed = container.ingest_service.reap_stale(threshold)
    return {"closed": closed}


# ==================== Registration ====================


def register_all_tasks(scheduler: "UnifiedScheduler", container: "ServiceContainer") -> None:
    """Register every task with the scheduler, bound to the container."""

    def bind(task_fn: Callable[["ServiceContainer"], Any]) -> Callable[[], Any]:
        @wraps(task_fn)
        def bound_task():
            return task_fn(container)

        return bound_task

    scheduler.register_task(ALERTS_EVALUATE, bind(alerts_evaluate_task))
    scheduler.register_task(SESSIONS_REAP_STALE, bind(sessions_reap_stale_task))
    logger.info("Registered scheduled tasks: %s, %s", ALERTS_EVALUATE, SESSIONS_REAP_STALE)


def schedule_default_jobs(scheduler: "UnifiedScheduler", container: "ServiceContainer") -> None:
    """Schedule the default jobs at the configured cadences."""
    config = container.config
    scheduler.schedule_interval(
        ALERTS_EVALUATE,
        interval_seconds=config.alert_eval_interval_seconds,
        job_id="alerts_evaluate",
        start_immediately=True,
    )
    scheduler.schedule_interval(
        SESSIONS_REAP_STALE,
        interval_seconds=config.session_reaper_interval_seconds,
        job_id="sessions_reap_stale",
    )
    for job in scheduler.get_jobs():
        logger.debug("  - %s: every %ss", job.job_id, job.interval_seconds)


def configure_scheduler(
    scheduler: "UnifiedScheduler",
    container: "ServiceContainer",
    *,
    start: bool = True,
) -> None:
    """Register tasks, apply default schedules, and optionally start the scheduler."""
    register_all_tasks(scheduler, container)
    schedule_default_jobs(scheduler, container)
    if start:
        scheduler.start()
