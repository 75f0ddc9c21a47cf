"""
Container Builder
=================

Construction of the service graph, split by layer so each piece can be built
and tested on its own:

- build_infrastructure(): database handler, repositories, audit logger
- build_services(): normalizer, deduplicator, ingestion and alert services
- build(): both, plus the EventBus and the scheduler
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from app.config import AppConfig
from app.services.application.alert_evaluation_service import AlertEvaluationService
from app.services.application.alert_rule_service import AlertRuleService
from app.services.application.telemetry_ingest_service import TelemetryIngestService
from app.services.utilities.deduplication_service import DeduplicationService
from app.services.utilities.normalization_service import NormalizationService
from app.utils.cache import TTLCache
from app.utils.event_bus import EventBus
from app.utils.time import Clock, utc_now
from app.workers.unified_scheduler import UnifiedScheduler
from infrastructure.database.repositories.alerts import AlertInstanceRepository, AlertRuleRepository
from infrastructure.database.repositories.sessions import IngestionErrorRepository, IngestionSessionRepository
from infrastructure.database.repositories.telemetry import ReadingRepository, StreamRepository
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)


@dataclass
class InfrastructureComponents:
    """Persistence layer: database handler, repositories and audit log."""

    database: SQLiteDatabaseHandler
    stream_repo: StreamRepository
    reading_repo: ReadingRepository
    session_repo: IngestionSessionRepository
    ingestion_error_repo: IngestionErrorRepository
    alert_rule_repo: AlertRuleRepository
    alert_instance_repo: AlertInstanceRepository
    audit_logger: AuditLogger


@dataclass
class ServiceComponents:
    normalizer: NormalizationService
    deduplicator: DeduplicationService
    ingest_service: TelemetryIngestService
    alert_evaluation_service: AlertEvaluationService
    alert_rule_service: AlertRuleService


class ContainerBuilder:
    """Builds every component of the ServiceContainer from an AppConfig."""

    def __init__(self, config: AppConfig, *, clock: Clock = utc_now, event_bus: Any | None = None) -> None:
        self.config = config
        self.clock = clock
        self.event_bus = event_bus

    def build_infrastructure(self) -> InfrastructureComponents:
        database = SQLiteDatabaseHandler(
            self.config.database_path,
            timeout_seconds=self.config.storage_timeout_seconds,
        )
        database.create_tables()
        return InfrastructureComponents(
            database=database,
            stream_repo=StreamRepository(database),
            reading_repo=ReadingRepository(database),
            session_repo=IngestionSessionRepository(database),
            ingestion_error_repo=IngestionErrorRepository(database),
            alert_rule_repo=AlertRuleRepository(database),
            alert_instance_repo=AlertInstanceRepository(database),
            audit_logger=AuditLogger(self.config.audit_log_path),
        )

    def build_services(self, infra: InfrastructureComponents, event_bus: Any) -> ServiceComponents:
        config = self.config
        normalizer = NormalizationService(
            clock=self.clock,
            future_skew=timedelta(seconds=config.future_skew_seconds),
            max_age=timedelta(hours=config.stale_reading_hours),
        )
        dedup_cache = TTLCache(
            enabled=config.dedup_cache_enabled,
            ttl_seconds=config.dedup_cache_ttl_seconds,
            maxsize=config.dedup_cache_maxsize,
        )
        deduplicator = DeduplicationService(infra.reading_repo, cache=dedup_cache)
        ingest_service = TelemetryIngestService(
            stream_repo=infra.stream_repo,
            reading_repo=infra.reading_repo,
            session_repo=infra.session_repo,
            error_repo=infra.ingestion_error_repo,
            normalizer=normalizer,
            deduplicator=deduplicator,
            event_bus=event_bus,
            clock=self.clock,
            max_batch_size=config.max_batch_size,
            session_stale_after=timedelta(minutes=config.session_stale_minutes),
        )
        alert_evaluation_service = AlertEvaluationService(
            rule_repo=infra.alert_rule_repo,
            instance_repo=infra.alert_instance_repo,
            reading_repo=infra.reading_repo,
            event_bus=event_bus,
            audit_logger=infra.audit_logger,
            clock=self.clock,
            max_readings_per_pair=config.max_readings_per_pair,
        )
        alert_rule_service = AlertRuleService(
            infra.alert_rule_repo,
            infra.stream_repo,
            audit_logger=infra.audit_logger,
            clock=self.clock,
        )
        return ServiceComponents(
            normalizer=normalizer,
            deduplicator=deduplicator,
            ingest_service=ingest_service,
            alert_evaluation_service=alert_evaluation_service,
            alert_rule_service=alert_rule_service,
        )

    def build(self) -> dict[str, Any]:
        """Build all components and return them as ServiceContainer keyword arguments."""
        infra = self.build_infrastructure()
        event_bus = self.event_bus if self.event_bus is not None else EventBus()
        services = self.build_services(infra, event_bus)
        scheduler = UnifiedScheduler(max_workers=self.config.scheduler_max_workers)
        logger.info("Container components built (database=%s)", self.config.database_path)
        return {
            "config": self.config,
            "event_bus": event_bus,
            "scheduler": scheduler,
            **vars(infra),
            **vars(services),
        }
