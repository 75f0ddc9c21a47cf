from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.config import AppConfig
from app.services.application.alert_evaluation_service import AlertEvaluationService
from app.services.application.alert_rule_service import AlertRuleService
from app.services.application.telemetry_ingest_service import TelemetryIngestService
from app.services.container_builder import ContainerBuilder
from app.services.utilities.deduplication_service import DeduplicationService
from app.services.utilities.normalization_service import NormalizationService
from app.utils.time import Clock, utc_now
from app.workers.unified_scheduler import UnifiedScheduler
from infrastructure.database.repositories.alerts import AlertInstanceRepository, AlertRuleRepository
from infrastructure.database.repositories.sessions import IngestionErrorRepository, IngestionSessionRepository
from infrastructure.database.repositories.telemetry import ReadingRepository, StreamRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Aggregate and manage the telemetry core services."""

    config: AppConfig
    database: SQLiteDatabaseHandler
    stream_repo: StreamRepository
    reading_repo: ReadingRepository
    session_repo: IngestionSessionRepository
    ingestion_error_repo: IngestionErrorRepository
    alert_rule_repo: AlertRuleRepository
    alert_instance_repo: AlertInstanceRepository
    audit_logger: AuditLogger
    event_bus: Any
    normalizer: NormalizationService
    deduplicator: DeduplicationService
    ingest_service: TelemetryIngestService
    alert_evaluation_service: AlertEvaluationService
    alert_rule_service: AlertRuleService
    scheduler: UnifiedScheduler

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        start_scheduler: bool | None = None,
        clock: Clock = utc_now,
        event_bus: Any | None = None,
    ) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        Args:
            config: Application configuration
            start_scheduler: Start background jobs (defaults to ``config.enable_scheduler``)
            clock: Current-time source shared by every service
            event_bus: Override for the process-wide EventBus
        """
        components = ContainerBuilder(config, clock=clock, event_bus=event_bus).build()
        container = cls(**components)

        if config.enable_scheduler if start_scheduler is None else start_scheduler:
            from app.workers.scheduled_tasks import configure_scheduler

            configure_scheduler(container.scheduler, container)
            logger.info("Background scheduler started")

        logger.info("ServiceContainer built successfully.")
        return container

    def shutdown(self) -> None:
        """Stop background work, then release the database."""
        try:
            self.scheduler.shutdown(wait=True)
        except RuntimeError as exc:
            logger.warning("Failed to stop scheduler cleanly: %s", exc)
        self.database.close_db()
        logger.info("ServiceContainer shutdown complete.")
