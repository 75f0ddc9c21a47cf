"""
Background scheduler for periodic telemetry maintenance.

One loop thread pops due jobs from a heap and hands them to a bounded
ThreadPoolExecutor. Interval jobs advance from their scheduled time
(fixed-rate) and never pile up missed runs. A job whose previous run is still
in flight is skipped for that slot rather than run twice concurrently.

Jobs are registered by task name so that the same callable can be scheduled
and also triggered on demand with ``run_now``.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from app.utils.time import utc_now

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobResult:
    """Outcome of one job execution."""

    job_id: str
    status: JobStatus
    started_at: datetime
    completed_at: datetime
    result: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }


@dataclass
class ScheduledJob:
    job_id: str
    task_name: str
    interval_seconds: float
    enabled: bool = True
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)

    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    last_error: str | None = None

    @property
    def namespace(self) -> str:
        return self.task_name.split(".", 1)[0] if "." in self.task_name else "default"

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "task_name": self.task_name,
            "namespace": self.namespace,
            "interval_seconds": self.interval_seconds,
            "enabled": self.enabled,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "last_error": self.last_error,
        }


class UnifiedScheduler:
    """
    Heap-driven scheduler with a bounded worker pool.

    Heap entries are ``(run_at_ts, seq, job_id)``. Entries are never removed
    in place; stale ones (job disabled or rescheduled) are skipped
    when popped.
    """

    def __init__(
        self,
        *,
        max_workers: int = 4,
        check_interval_seconds: float = 0.5,
        max_history: int = 500,
    ) -> None:
        self._max_workers = int(max_workers)
        self._check_interval = float(check_interval_seconds)
        self._max_history = int(max_history)

        self._tasks: dict[str, Callable[..., Any]] = {}
        self._jobs: dict[str, ScheduledJob] = {}
        self._heap: list[tuple[float, int, str]] = []
        self._seq = 0
        self._history: list[JobResult] = []
        self._in_flight: dict[str, Future] = {}

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    # ==================== Task Registration ====================

    def register_task(self, name: str, func: Callable[..., Any]) -> None:
        with self._lock:
            self._tasks[name] = func
        logger.debug("Registered task: %s", name)

    # ==================== Job Scheduling ====================

    def schedule_interval(
        self,
        task_name: str,
        interval_seconds: float,
        *,
        job_id: str | None = None,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        start_immediately: bool = False,
    ) -> ScheduledJob:
        """Run *task_name* every *interval_seconds*."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if task_name not in self._tasks:
            raise KeyError(f"Unknown task: {task_name}")
        now = utc_now()
        job = ScheduledJob(
            job_id=job_id or task_name,
            task_name=task_name,
            interval_seconds=float(interval_seconds),
            args=tuple(args),
            kwargs=dict(kwargs or {}),
            next_run=now if start_immediately else now + timedelta(seconds=interval_seconds),
        )
        self._add_job(job)
        logger.info("Scheduled interval job %s (every %ss)", job.job_id, interval_seconds)
        return job

    def run_now(self, task_name: str, *, args: tuple = (), kwargs: dict[str, Any] | None = None) -> JobResult:
        """Run a registered task synchronously on the calling thread."""
        func = self._tasks.get(task_name)
        if func is None:
            raise KeyError(f"Unknown task: {task_name}")
        result = self._invoke(f"{task_name}:manual", func, args, kwargs or {})
        self._record(result)
        return result

    def _add_job(self, job: ScheduledJob) -> None:
        with self._lock:
            self._jobs[job.job_id] = job
            self._push(job)

    def _push(self, job: ScheduledJob) -> None:
        # Caller holds the lock
        if not job.enabled or job.next_run is None:
            return
        self._seq += 1
        heapq.heappush(self._heap, (job.next_run.timestamp(), self._seq, job.job_id))

    def enable_job(self, job_id: str, enabled: bool = True) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.enabled = bool(enabled)
            if job.enabled:
                if job.next_run is None:
                    job.next_run = utc_now() + timedelta(seconds=job.interval_seconds)
                self._push(job)
            return True

    def get_jobs(self) -> list[ScheduledJob]:
        with self._lock:
            return list(self._jobs.values())

    # ==================== Lifecycle ====================

    def start(self) -> None:
        if self.is_running():
            logger.warning("Scheduler already running")
            return
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="scheduler-job")
        self._thread = threading.Thread(target=self._run_loop, name="scheduler-loop", daemon=True)
        self._thread.start()
        logger.info("UnifiedScheduler started (%d workers, %d jobs)", self._max_workers, len(self._jobs))

    def stop(self, wait: bool = True, timeout: float = 30.0) -> None:
        """
        Stop dispatching new runs.

        Args:
            wait: Let in-flight runs finish before returning
            timeout: Upper bound for joining the loop thread
        """
        if not self.is_running():
            return
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)
            self._executor = None
        logger.info("UnifiedScheduler stopped")

    def shutdown(self, wait: bool = True, timeout: float = 30.0) -> None:
        self.stop(wait=wait, timeout=timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._dispatch_due(utc_now())
            except Exception:
                logger.exception("Scheduler loop iteration failed")
            self._stop_event.wait(self._check_interval)

    # ==================== Dispatch ====================

    def _dispatch_due(self, now: datetime) -> int:
        """Submit every job due at *now*. Returns the number submitted."""
        submitted = 0
        now_ts = now.timestamp()
        with self._lock:
            while self._heap and self._heap[0][0] <= now_ts:
                run_at_ts, _, job_id = heapq.heappop(self._heap)
                job = self._jobs.get(job_id)
                if job is None or not job.enabled or job.next_run is None:
                    continue
                if abs(job.next_run.timestamp() - run_at_ts) > 1e-6:
                    continue

                scheduled_for = job.next_run
                self._advance(job, scheduled_for, now)
                self._push(job)

                running = self._in_flight.get(job_id)
                if running is not None and not running.done():
                    job.skipped_count += 1
                    logger.warning("Job %s still running; skipping slot %s", job_id, scheduled_for.isoformat())
                    continue
                if self._executor is None:
                    continue
                self._in_flight[job_id] = self._executor.submit(self._execute_job, job_id)
                submitted += 1
        return submitted

    @staticmethod
    def _advance(job: ScheduledJob, scheduled_for: datetime, now: datetime) -> None:
        interval = timedelta(seconds=job.interval_seconds)
        next_run = scheduled_for + interval
        if next_run <= now:
            # Fell behind (sleep, long run): jump to the first future slot
            missed = int((now - next_run) / interval) + 1
            next_run += interval * missed
        job.next_run = next_run

    def _execute_job(self, job_id: str) -> JobResult | None:
        with self._lock:
            job = self._jobs.get(job_id)
            func = self._tasks.get(job.task_name) if job else None
        if job is None:
            return None
        if func is None:
            now = utc_now()
            result = JobResult(job_id, JobStatus.FAILED, now, now, error=f"Unknown task: {job.task_name}")
        else:
            result = self._invoke(job_id, func, job.args, job.kwargs)

        with self._lock:
            job.last_run = result.started_at
            job.run_count += 1
            if result.success:
                job.success_count += 1
                job.last_error = None
            else:
                job.failure_count += 1
                job.last_error = result.error
        self._record(result)
        return result

    @staticmethod
    def _invoke(job_id: str, func: Callable[..., Any], args: tuple, kwargs: dict[str, Any]) -> JobResult:
        started_at = utc_now()
        started = time.perf_counter()
        try:
            value = func(*args, **kwargs)
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            return JobResult(job_id, JobStatus.FAILED, started_at, utc_now(), error=str(exc))
        logger.debug("Job %s completed in %.3fs", job_id, time.perf_counter() - started)
        return JobResult(job_id, JobStatus.COMPLETED, started_at, utc_now(), result=value)

    def _record(self, result: JobResult) -> None:
        with self._lock:
            self._history.append(result)
            if len(self._history) > self._max_history:
                del self._history[: len(self._history) - self._max_history]

    # ==================== Status ====================

    def get_history(self, job_id: str | None = None, limit: int = 50) -> list[JobResult]:
        with self._lock:
            results = [r for r in self._history if job_id is None or r.job_id == job_id]
        return list(reversed(results))[: int(limit)]

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            recent = self._history[-20:]
            return {
                "running": self.is_running(),
                "total_jobs": len(self._jobs),
                "enabled_jobs": sum(1 for j in self._jobs.values() if j.enabled),
                "tasks": sorted(self._tasks),
                "in_flight": sum(1 for f in self._in_flight.values() if not f.done()),
                "recent_failures": sum(1 for r in recent if not r.success),
                "max_workers": self._max_workers,
                "jobs": [j.to_dict() for j in self._jobs.values()],
            }

    def health_check(self) -> dict[str, Any]:
        """Summarize scheduler health: unhealthy when stopped or mostly failing."""
        with self._lock:
            recent = self._history[-50:]
        failures = sum(1 for r in recent if not r.success)
        failure_rate = failures / len(recent) if recent else 0.0
        if not self.is_running():
            health, reason = "unhealthy", "Scheduler is not running"
        elif failure_rate > 0.5:
            health, reason = "unhealthy", f"High failure rate: {failure_rate:.0%}"
        elif failure_rate > 0.2:
            health, reason = "degraded", f"Elevated failure rate: {failure_rate:.0%}"
        else:
            health, reason = "healthy", "All systems operational"
        return {
            "health": health,
            "reason": reason,
            "timestamp": utc_now().isoformat(),
            "recent_executions": len(recent),
            "recent_failures": failures,
            "failure_rate": round(failure_rate, 3),
        }
