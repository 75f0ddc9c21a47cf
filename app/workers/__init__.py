"""
Workers module for background scheduling.

This module contains:
- unified_scheduler: Heap-driven scheduler with a bounded worker pool
- scheduled_tasks: Task definitions organized by namespace (alerts.*, sessions.*)
"""

__all__ = [
    "UnifiedScheduler",
    "configure_scheduler",
    "register_all_tasks",
    "schedule_default_jobs",
]

from app.workers.unified_scheduler import UnifiedScheduler
from app.workers.scheduled_tasks import configure_scheduler, register_all_tasks, schedule_default_jobs
