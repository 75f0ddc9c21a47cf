"""
Shared test fixtures for the telemetry core test suite.

Provides:
- In-memory SQLite database with all tables created
- Repository instances wired to the test database
- A controllable clock shared by every service
- Mock EventBus / AuditLogger for collaborators
- Service factories for the ingestion and alert services
- Helper utilities for seeding test data

Usage:
    def test_example(ingest_service, seed):
        seed.stream("temp-1", metric_type="temperature")
        result = ingest_service.ingest_batch("site-1", [...])
        assert result.accepted == 1
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from app.domain.telemetry.stream import SensorStream
from app.enums.telemetry import AlertRuleType
from infrastructure.database.repositories.alerts import AlertInstanceRepository, AlertRuleRepository
from infrastructure.database.repositories.sessions import IngestionErrorRepository, IngestionSessionRepository
from infrastructure.database.repositories.telemetry import ReadingRepository, StreamRepository

# ---------------------------------------------------------------------------
# Database & Repositories
# ---------------------------------------------------------------------------
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

# ---------------------------------------------------------------------------
# Logging - keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)

SITE_ID = "site-1"
OTHER_SITE_ID = "site-2"
FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; call it like ``utc_now`` and move it with ``advance``."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock():
    """FakeClock pinned to FIXED_NOW."""
    return FakeClock()


# ========================== Database Fixtures ==============================


@pytest.fixture()
def db_handler():
    """In-memory SQLite database with all tables created.

    Each test gets a fresh database - no cross-test contamination.
    """
    handler = SQLiteDatabaseHandler(":memory:")
    handler.create_tables()
    yield handler
    handler.close_db()


@pytest.fixture()
def file_db_handler(tmp_path):
    """File-backed database, for tests that touch it from several threads."""
    handler = SQLiteDatabaseHandler(str(tmp_path / "telemetry.db"))
    handler.create_tables()
    yield handler
    handler.close_db()


# ========================== Repository Fixtures ============================


@pytest.fixture()
def stream_repo(db_handler):
    return StreamRepository(db_handler)


@pytest.fixture()
def reading_repo(db_handler):
    return ReadingRepository(db_handler)


@pytest.fixture()
def session_repo(db_handler):
    return IngestionSessionRepository(db_handler)


@pytest.fixture()
def error_repo(db_handler):
    return IngestionErrorRepository(db_handler)


@pytest.fixture()
def alert_rule_repo(db_handler):
    return AlertRuleRepository(db_handler)


@pytest.fixture()
def alert_instance_repo(db_handler):
    return AlertInstanceRepository(db_handler)


# ========================== Mock Service Fixtures ==========================


@pytest.fixture()
def mock_event_bus():
    """Mock EventBus that records publish calls."""
    bus = MagicMock()
    bus.publish = MagicMock()
    bus.subscribe = MagicMock()
    return bus


@pytest.fixture()
def mock_audit_logger():
    """Mock AuditLogger."""
    logger = MagicMock()
    logger.log_event = MagicMock()
    return logger


# ========================== Service Factory Fixtures =======================


@pytest.fixture()
def normalizer(clock):
    from app.services.utilities.normalization_service import NormalizationService

    return NormalizationService(clock=clock)


@pytest.fixture()
def deduplicator(reading_repo):
    """DeduplicationService with the fast-path cache enabled."""
    from app.services.utilities.deduplication_service import DeduplicationService
    from app.utils.cache import TTLCache

    return DeduplicationService(reading_repo, cache=TTLCache(ttl_seconds=600, maxsize=1000))


def make_ingest_service(db, clock, event_bus=None, **overrides: Any):
    """Build a TelemetryIngestService over *db*; shared with thread tests."""
    from app.services.application.telemetry_ingest_service import TelemetryIngestService
    from app.services.utilities.deduplication_service import DeduplicationService
    from app.services.utilities.normalization_service import NormalizationService

    reading_repo = ReadingRepository(db)
    return TelemetryIngestService(
        stream_repo=StreamRepository(db),
        reading_repo=reading_repo,
        session_repo=IngestionSessionRepository(db),
        error_repo=IngestionErrorRepository(db),
        normalizer=NormalizationService(clock=clock),
        deduplicator=overrides.pop("deduplicator", None) or DeduplicationService(reading_repo),
        event_bus=event_bus,
        clock=clock,
        **overrides,
    )


def make_evaluation_service(db, clock, event_bus=None, audit_logger=None, **overrides: Any):
    from app.services.application.alert_evaluation_service import AlertEvaluationService

    return AlertEvaluationService(
        rule_repo=AlertRuleRepository(db),
        instance_repo=AlertInstanceRepository(db),
        reading_repo=ReadingRepository(db),
        event_bus=event_bus,
        audit_logger=audit_logger,
        clock=clock,
        **overrides,
    )


@pytest.fixture()
def ingest_service(db_handler, clock, deduplicator, mock_event_bus):
    """TelemetryIngestService with real repos and a mocked EventBus."""
    return make_ingest_service(db_handler, clock, mock_event_bus, deduplicator=deduplicator)


@pytest.fixture()
def alert_evaluation_service(db_handler, clock, mock_event_bus, mock_audit_logger):
    """AlertEvaluationService with real repos, mocked EventBus and audit log."""
    return make_evaluation_service(db_handler, clock, mock_event_bus, mock_audit_logger)


@pytest.fixture()
def alert_rule_service(alert_rule_repo, stream_repo, mock_audit_logger, clock):
    from app.services.application.alert_rule_service import AlertRuleService

    return AlertRuleService(alert_rule_repo, stream_repo, audit_logger=mock_audit_logger, clock=clock)


# ========================== Seed Data Helpers ==============================


class SeedData:
    """Helper to create commonly needed test data.

    Usage in tests::

        def test_something(seed):
            seed.stream("temp-1")
            rule = seed.rule(["temp-1"], threshold={"threshold": 10.0})
    """

    def __init__(self, db_handler: SQLiteDatabaseHandler, clock: FakeClock):
        self._db = db_handler
        self._clock = clock

    def stream(
        self,
        stream_id: str = "temp-1",
        *,
        site_id: str = SITE_ID,
        metric_type: str = "temperature",
        equipment_id: str | None = "eq-1",
    ) -> SensorStream:
        """Register a sensor stream and return it."""
        return StreamRepository(self._db).register(
            SensorStream(
                stream_id=stream_id,
                site_id=site_id,
                metric_type=metric_type,
                name=stream_id,
                equipment_id=equipment_id,
                created_at=self._clock(),
            )
        )

    def rule(
        self,
        stream_ids: list[str],
        *,
        site_id: str = SITE_ID,
        rule_type: AlertRuleType | str = AlertRuleType.THRESHOLD_ABOVE,
        threshold: dict[str, Any] | None = None,
        window_minutes: int = 5,
        name: str = "High temperature",
        is_active: bool = True,
    ):
        """Create an alert rule directly through the service layer."""
        from app.services.application.alert_rule_service import AlertRuleService

        service = AlertRuleService(AlertRuleRepository(self._db), StreamRepository(self._db), clock=self._clock)
        return service.create_rule(
            site_id,
            name=name,
            rule_type=rule_type,
            threshold=threshold if threshold is not None else {"threshold": 10.0},
            stream_ids=stream_ids,
            evaluation_window_minutes=window_minutes,
            is_active=is_active,
        )


@pytest.fixture()
def seed(db_handler, clock):
    """SeedData helper for quickly populating the test database."""
    return SeedData(db_handler, clock)


# ========================== Flask App Fixtures =============================


@pytest.fixture()
def app(tmp_path):
    """Flask app over an in-memory database, scheduler off, EventBus mocked.

    pytest-flask derives the ``client`` fixture from this one.
    """
    from app import create_app

    flask_app = create_app(
        {
            "DATABASE_PATH": ":memory:",
            "AUDIT_LOG_PATH": str(tmp_path / "audit.log"),
        },
        start_scheduler=False,
        event_bus=MagicMock(),
    )
    flask_app.config["TESTING"] = True
    yield flask_app
    flask_app.extensions["telemetry_shutdown"]("test teardown")


@pytest.fixture()
def container(app):
    """ServiceContainer behind the test app."""
    return app.config["CONTAINER"]


def raw(stream_id: str, value: Any, unit: str = "degF", *, message_id: str | None = None,
        at: datetime | None = None) -> dict[str, Any]:
    """Raw reading payload as a device would send it."""
    payload: dict[str, Any] = {"stream_id": stream_id, "value": value, "unit": unit}
    if message_id is not None:
        payload["message_id"] = message_id
    if at is not None:
        payload["source_timestamp"] = at.isoformat()
    return payload
