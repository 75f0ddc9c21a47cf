from __future__ import annotations

import argparse
import json
import logging
import signal
import threading

from app.config import load_config, setup_logging
from app.services.container import ServiceContainer
from app.workers.scheduled_tasks import (
    ALERTS_EVALUATE,
    SESSIONS_REAP_STALE,
    configure_scheduler,
    register_all_tasks,
)
from app.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="telemetry-scheduler")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        choices=[ALERTS_EVALUATE, SESSIONS_REAP_STALE],
        help="Run a single task synchronously, print its result and exit",
    )
    mode.add_argument(
        "--status",
        action="store_true",
        help="Print the configured jobs as JSON and exit without running them",
    )
    parser.add_argument(
        "--disable",
        action="append",
        default=[],
        metavar="JOB_ID",
        help="Keep a scheduled job from running (repeatable)",
    )
    parser.add_argument(
        "--health-interval",
        type=float,
        default=60.0,
        metavar="SECONDS",
        help="How often the running scheduler logs its health (default 60)",
    )
    return parser


def disable_jobs(scheduler: UnifiedScheduler, job_ids: list[str]) -> list[str]:
    """Disable *job_ids*; returns the ids that matched no job."""
    unknown = [job_id for job_id in job_ids if not scheduler.enable_job(job_id, False)]
    for job_id in unknown:
        logger.warning("No scheduled job named %s; nothing to disable", job_id)
    return unknown


def log_health(scheduler: UnifiedScheduler) -> dict:
    """Log one health line; unhealthy or degraded states include the last failure."""
    health = scheduler.health_check()
    if health["health"] == "healthy":
        logger.info("Scheduler health: %s (%d recent runs)", health["health"], health["recent_executions"])
        return health
    last_failure = next((r for r in scheduler.get_history(limit=50) if not r.success), None)
    logger.warning(
        "Scheduler health: %s - %s; last failure: %s",
        health["health"],
        health["reason"],
        f"{last_failure.job_id}: {last_failure.error}" if last_failure else "none",
    )
    return health


def main(argv: list[str] | None = None) -> int:
    """Run the background scheduler without starting the web server."""
    args = build_parser().parse_args(argv)

    config = load_config()
    setup_logging(debug=config.DEBUG)

    if args.once:
        container = ServiceContainer.build(config, start_scheduler=False)
        try:
            register_all_tasks(container.scheduler, container)
            result = container.scheduler.run_now(args.once)
            print(json.dumps(result.to_dict() | {"result": result.result}, default=str, indent=2))
            return 0 if result.success else 1
        finally:
            container.shutdown()

    if args.status:
        container = ServiceContainer.build(config, start_scheduler=False)
        try:
            configure_scheduler(container.scheduler, container, start=False)
            unknown = disable_jobs(container.scheduler, args.disable)
            print(json.dumps(container.scheduler.get_status(), default=str, indent=2))
            return 1 if unknown else 0
        finally:
            container.shutdown()

    container = ServiceContainer.build(config, start_scheduler=False)
    scheduler = container.scheduler
    configure_scheduler(scheduler, container, start=False)
    disable_jobs(scheduler, args.disable)
    scheduler.start()

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    logger.info("Scheduler running (press Ctrl+C to stop)")
    try:
        while not stop.wait(max(args.health_interval, 1.0)):
            log_health(scheduler)
    except KeyboardInterrupt:
        logger.info("Stopping scheduler...")
    finally:
        container.shutdown()
    return 0


if __name__ == "__main__":
    import sys

    raise SystemExit(main(sys.argv[1:]))
