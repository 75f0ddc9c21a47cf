"""
Enums Module
============

This module provides enumeration types for the telemetry core.
Enums ensure type safety and consistency across the codebase.
"""

from app.enums.events import AlertEvent, EventType, TelemetryEvent
from app.enums.telemetry import (
    AlertRuleType,
    AlertSeverity,
    AlertTransition,
    EvaluationState,
    IngestionErrorType,
    IngestionProtocol,
    MetricType,
    QualityCode,
    Unit,
)

__all__ = [
    "AlertEvent",
    "AlertRuleType",
    "AlertSeverity",
    "AlertTransition",
    "EvaluationState",
    "EventType",
    "IngestionErrorType",
    "IngestionProtocol",
    "MetricType",
    "QualityCode",
    "TelemetryEvent",
    "Unit",
]
