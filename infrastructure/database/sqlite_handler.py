import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from flask import Flask

from app.domain.exceptions import ConflictError, StorageError
from infrastructure.database.ops.alerts import AlertOperations
from infrastructure.database.ops.sessions import SessionOperations
from infrastructure.database.ops.telemetry import TelemetryOperations

logger = logging.getLogger(__name__)


class SQLiteDatabaseHandler(
    TelemetryOperations,
    SessionOperations,
    AlertOperations,
):
    """Thread-safe SQLite handler decoupled from Flask globals."""

    def __init__(self, database_path: str, *, timeout_seconds: float = 5.0) -> None:
        self._database_path = database_path
        self._timeout_seconds = float(timeout_seconds)
        self._local = threading.local()

        # Ensure the directory for the database file exists
        if database_path != ":memory:":
            db_path = Path(database_path)
            if not db_path.parent.exists():
                db_path.parent.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory: %s", db_path.parent)

    # --- Lifecycle ------------------------------------------------------------
    def init_app(self, app: Flask | None = None) -> None:
        # An in-memory database lives only as long as its connection
        if app is not None and self._database_path != ":memory:":
            app.teardown_appcontext(self.close_db)
        self.create_tables()

    def get_db(self) -> sqlite3.Connection:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is None:
            try:
                connection = self._open_connection()
            except sqlite3.Error as exc:
                raise StorageError(f"Unable to open database {self._database_path}") from exc
            self._local.connection = connection
            self._local.tx_depth = 0
        return connection

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._database_path,
            check_same_thread=False,
            timeout=self._timeout_seconds,
        )
        try:
            connection.row_factory = sqlite3.Row
            self._configure_connection(connection)
            return connection
        except Exception:
            connection.close()
            raise

    def _configure_connection(self, connection: sqlite3.Connection) -> None:
        """Configure SQLite connection.

        - WAL mode: readers do not block the single writer
        - NORMAL synchronous: still safe with WAL
        - busy_timeout: writers wait at most ``timeout_seconds`` for the lock
        """
        if self._database_path != ":memory:":
            connection.execute("PRAGMA journal_mode=WAL")
            connection.execute("PRAGMA synchronous=NORMAL")
        connection.execute(f"PRAGMA busy_timeout={int(self._timeout_seconds * 1000)}")
        connection.execute("PRAGMA foreign_keys=ON")
        connection.execute("PRAGMA temp_store=MEMORY")
        connection.commit()

    def close_db(self, _e: Optional[BaseException] = None) -> None:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            delattr(self._local, "connection")
            self._local.tx_depth = 0

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_db()
        try:
            yield conn
        finally:
            if getattr(self._local, "tx_depth", 0) == 0:
                conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one write transaction; all-or-nothing.

        The outermost block issues ``BEGIN IMMEDIATE`` so the write lock is
        taken up front; nested blocks join it. Any exception rolls the whole
        transaction back. ``sqlite3.IntegrityError`` surfaces as
        ``ConflictError``, any other ``sqlite3.Error`` as ``StorageError``.
        """
        conn = self.get_db()
        depth = getattr(self._local, "tx_depth", 0)
        if depth == 0:
            if conn.in_transaction:
                conn.commit()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"Could not begin transaction: {exc}") from exc

        self._local.tx_depth = depth + 1
        try:
            yield conn
        except BaseException as exc:
            self._local.tx_depth = depth
            if depth > 0:
                raise
            conn.rollback()
            if isinstance(exc, sqlite3.IntegrityError):
                raise ConflictError(f"Constraint violated: {exc}") from exc
            if isinstance(exc, sqlite3.Error):
                logger.error("Transaction rolled back: %s", exc)
                raise StorageError(f"Storage operation failed: {exc}") from exc
            raise
        else:
            self._local.tx_depth = depth
            if depth == 0:
                try:
                    conn.commit()
                except sqlite3.Error as exc:
                    conn.rollback()
                    raise StorageError(f"Commit failed: {exc}") from exc

    # --- Schema ----------------------------------------------------------------
    def create_tables(self) -> None:
        """Creates the necessary tables in the database if they do not already exist."""
        with self.transaction() as db:
            # Sensor stream directory
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS SensorStreams (
                    stream_id TEXT PRIMARY KEY,
                    site_id TEXT NOT NULL,
                    equipment_id TEXT,
                    name TEXT,
                    metric_type TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    metadata TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT
                )
                """
            )
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_streams_site_equipment ON SensorStreams(site_id, equipment_id)"
            )
            # Normalized readings (append-only)
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS SensorReadings (
                    reading_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    stream_id TEXT NOT NULL,
                    time TEXT NOT NULL,
                    value REAL NOT NULL,
                    quality_code TEXT NOT NULL,
                    source_timestamp TEXT,
                    ingestion_timestamp TEXT NOT NULL,
                    message_id TEXT,
                    metadata TEXT,
                    UNIQUE (stream_id, message_id),
                    FOREIGN KEY (stream_id) REFERENCES SensorStreams(stream_id)
                )
                """
            )
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_readings_stream_time ON SensorReadings(stream_id, time)"
            )
            # Ingestion sessions
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS IngestionSessions (
                    session_id TEXT PRIMARY KEY,
                    site_id TEXT NOT NULL,
                    equipment_id TEXT NOT NULL,
                    protocol TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    last_heartbeat_at TEXT NOT NULL,
                    ended_at TEXT,
                    message_count INTEGER NOT NULL DEFAULT 0,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT
                )
                """
            )
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_open ON IngestionSessions(ended_at, last_heartbeat_at)"
            )
            db.execute("CREATE INDEX IF NOT EXISTS idx_sessions_site ON IngestionSessions(site_id)")
            # Rejected readings log
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS IngestionErrors (
                    error_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    site_id TEXT NOT NULL,
                    session_id TEXT,
                    stream_id TEXT,
                    message_id TEXT,
                    error_type TEXT NOT NULL,
                    error_message TEXT,
                    occurred_at TEXT NOT NULL
                )
                """
            )
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_ingestion_errors_site ON IngestionErrors(site_id, occurred_at)"
            )
            # Alert rules (operator-managed)
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS AlertRules (
                    rule_id TEXT PRIMARY KEY,
                    site_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    rule_type TEXT NOT NULL,
                    threshold TEXT NOT NULL,
                    stream_ids TEXT NOT NULL,
                    evaluation_window_minutes INTEGER NOT NULL DEFAULT 5,
                    severity TEXT NOT NULL DEFAULT 'warning',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    notify_channels TEXT,
                    metadata TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    created_by TEXT,
                    updated_by TEXT
                )
                """
            )
            db.execute("CREATE INDEX IF NOT EXISTS idx_alert_rules_site ON AlertRules(site_id, is_active)")
            # Alert instances (never deleted)
            db.execute(
                """
                CREATE TABLE IF NOT EXISTS AlertInstances (
                    alert_id TEXT PRIMARY KEY,
                    site_id TEXT NOT NULL,
                    rule_id TEXT NOT NULL,
                    stream_id TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    message TEXT,
                    triggering_value REAL,
                    threshold_value REAL,
                    current_value REAL,
                    fired_at TEXT NOT NULL,
                    last_seen_at TEXT,
                    cleared_at TEXT,
                    acknowledged_at TEXT,
                    acknowledged_by TEXT,
                    acknowledgment_notes TEXT,
                    metadata TEXT
                )
                """
            )
            # At most one active instance per (rule, stream)
            db.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_alert_instances_active
                ON AlertInstances(rule_id, stream_id) WHERE cleared_at IS NULL
                """
            )
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_alert_instances_site ON AlertInstances(site_id, fired_at)"
            )
        logger.info("Telemetry tables ready (%s)", self._database_path)
