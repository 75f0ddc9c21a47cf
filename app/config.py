"""
Configuration for the Telemetry Core
====================================
Runtime settings for ingestion, normalization, deduplication, alert
evaluation and the background scheduler, loaded from TELEMETRY_* environment
variables. Sets up the logging configuration as well.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from app.domain.exceptions import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number.") from None


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("TELEMETRY_ENV", "development"))
    DEBUG: bool = field(default_factory=lambda: _env_bool("TELEMETRY_DEBUG", False))
    secret_key: str = field(default_factory=lambda: os.getenv("TELEMETRY_SECRET_KEY", "TelemetryDevSecretKey"))
    database_path: str = field(default_factory=lambda: os.getenv("TELEMETRY_DATABASE_PATH", "database/telemetry.db"))
    audit_log_path: str = field(default_factory=lambda: os.getenv("TELEMETRY_AUDIT_LOG_PATH", "logs/audit.log"))

    # Every storage call gives up after this long instead of blocking.
    storage_timeout_seconds: float = field(
        default_factory=lambda: _env_float("TELEMETRY_STORAGE_TIMEOUT_SECONDS", 5.0)
    )

    # Normalizer
    future_skew_seconds: int = field(default_factory=lambda: _env_int("TELEMETRY_FUTURE_SKEW_SECONDS", 300))
    stale_reading_hours: int = field(default_factory=lambda: _env_int("TELEMETRY_STALE_READING_HOURS", 24))

    # Ingestion
    max_batch_size: int = field(default_factory=lambda: _env_int("TELEMETRY_MAX_BATCH_SIZE", 5000))
    dedup_cache_enabled: bool = field(default_factory=lambda: _env_bool("TELEMETRY_DEDUP_CACHE_ENABLED", True))
    dedup_cache_ttl_seconds: int = field(default_factory=lambda: _env_int("TELEMETRY_DEDUP_CACHE_TTL", 600))
    dedup_cache_maxsize: int = field(default_factory=lambda: _env_int("TELEMETRY_DEDUP_CACHE_MAXSIZE", 50_000))
    session_stale_minutes: int = field(default_factory=lambda: _env_int("TELEMETRY_SESSION_STALE_MINUTES", 15))

    # Alert evaluation
    max_readings_per_pair: int = field(default_factory=lambda: _env_int("TELEMETRY_MAX_READINGS_PER_PAIR", 1000))

    # Scheduler
    enable_scheduler: bool = field(default_factory=lambda: _env_bool("TELEMETRY_ENABLE_SCHEDULER", False))
    alert_eval_interval_seconds: int = field(
        default_factory=lambda: _env_int("TELEMETRY_ALERT_EVAL_INTERVAL_SECONDS", 60)
    )
    session_reaper_interval_seconds: int = field(
        default_factory=lambda: _env_int("TELEMETRY_SESSION_REAPER_INTERVAL_SECONDS", 300)
    )
    scheduler_max_workers: int = field(default_factory=lambda: _env_int("TELEMETRY_SCHEDULER_MAX_WORKERS", 4))

    # EventBus (fan-out after persistence)
    eventbus_queue_size: int = field(default_factory=lambda: _env_int("TELEMETRY_EVENTBUS_QUEUE_SIZE", 1024))
    eventbus_worker_count: int = field(default_factory=lambda: _env_int("TELEMETRY_EVENTBUS_WORKER_COUNT", 2))

    # Default insecure secret key - used only for detection
    _DEFAULT_SECRET_KEY: str = field(default="TelemetryDevSecretKey", init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.environment == "production" and self.secret_key == self._DEFAULT_SECRET_KEY:
            raise ConfigurationError(
                "Cannot use default secret key in production. "
                "Set TELEMETRY_SECRET_KEY environment variable to a secure random value."
            )

        positive = {
            "storage_timeout_seconds": self.storage_timeout_seconds,
            "future_skew_seconds": self.future_skew_seconds + 1,  # zero skew is allowed
            "stale_reading_hours": self.stale_reading_hours,
            "max_batch_size": self.max_batch_size,
            "session_stale_minutes": self.session_stale_minutes,
            "max_readings_per_pair": self.max_readings_per_pair,
            "alert_eval_interval_seconds": self.alert_eval_interval_seconds,
            "session_reaper_interval_seconds": self.session_reaper_interval_seconds,
            "scheduler_max_workers": self.scheduler_max_workers,
            "eventbus_queue_size": self.eventbus_queue_size,
            "eventbus_worker_count": self.eventbus_worker_count,
        }
        invalid = [name for name, value in positive.items() if value <= 0]
        if invalid:
            raise ConfigurationError(f"Configuration values must be positive: {', '.join(invalid)}")

    def as_flask_config(self) -> dict[str, Any]:
        """Render configuration values for Flask application."""
        return {
            "ENV": self.environment,
            "SECRET_KEY": self.secret_key,
            "DATABASE_PATH": self.database_path,
            "AUDIT_LOG_PATH": self.audit_log_path,
            "DEBUG": self.DEBUG,
        }


def setup_logging(debug: bool = False) -> None:
    """Setup logging configuration."""
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    # Root logger
    root = logging.getLogger()
    root.setLevel(log_level)

    # Keep existing handlers but avoid adding duplicates when create_app is called multiple times
    has_console = any(getattr(h, "name", "") == "telemetry_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "telemetry_file" for h in root.handlers)
    added_handler = False

    # Console handler (force UTF-8 to avoid UnicodeEncodeError on Windows terminals)
    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "telemetry_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file:
        os.makedirs("logs", exist_ok=True)
        file_handler = RotatingFileHandler(
            "logs/telemetry.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "telemetry_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    # Ensure handler levels follow the desired log level
    for handler in root.handlers:
        if getattr(handler, "name", "") in {"telemetry_console", "telemetry_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    if _env_bool("TELEMETRY_SILENCE_WERKZEUG", True):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    return AppConfig()
