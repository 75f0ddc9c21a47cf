"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from app.config import AppConfig, load_config
from app.domain.exceptions import ConfigurationError


def test_defaults(monkeypatch):
    for name in ("TELEMETRY_ENV", "TELEMETRY_MAX_BATCH_SIZE", "TELEMETRY_ENABLE_SCHEDULER"):
        monkeypatch.delenv(name, raising=False)
    config = load_config()

    assert config.environment == "development"
    assert config.max_batch_size == 5000
    assert config.enable_scheduler is False
    assert config.as_flask_config()["DATABASE_PATH"] == config.database_path


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("TELEMETRY_MAX_BATCH_SIZE", "250")
    monkeypatch.setenv("TELEMETRY_ENABLE_SCHEDULER", "yes")
    monkeypatch.setenv("TELEMETRY_STORAGE_TIMEOUT_SECONDS", "2.5")

    config = AppConfig()

    assert config.max_batch_size == 250
    assert config.enable_scheduler is True
    assert config.storage_timeout_seconds == 2.5


def test_non_numeric_value_is_rejected(monkeypatch):
    monkeypatch.setenv("TELEMETRY_MAX_BATCH_SIZE", "lots")
    with pytest.raises(ConfigurationError, match="TELEMETRY_MAX_BATCH_SIZE"):
        AppConfig()


def test_non_positive_value_is_rejected(monkeypatch):
    monkeypatch.setenv("TELEMETRY_ALERT_EVAL_INTERVAL_SECONDS", "0")
    with pytest.raises(ConfigurationError, match="alert_eval_interval_seconds"):
        AppConfig()


def test_zero_future_skew_is_allowed(monkeypatch):
    monkeypatch.setenv("TELEMETRY_FUTURE_SKEW_SECONDS", "0")
    assert AppConfig().future_skew_seconds == 0


def test_default_secret_refused_in_production(monkeypatch):
    monkeypatch.setenv("TELEMETRY_ENV", "production")
    monkeypatch.delenv("TELEMETRY_SECRET_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="secret key"):
        AppConfig()

    monkeypatch.setenv("TELEMETRY_SECRET_KEY", "s3cr3t")
    assert AppConfig().environment == "production"
