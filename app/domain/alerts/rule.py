"""
Alert Rule Entity
=================
Operator-managed rule; read-only to the evaluation engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from app.domain.alerts.thresholds import RuleEvaluation, ThresholdConfig, threshold_from_dict
from app.domain.exceptions import ValidationError
from app.domain.telemetry.reading import NormalizedReading
from app.enums.telemetry import AlertRuleType, AlertSeverity
from app.utils.time import coerce_datetime

DEFAULT_EVALUATION_WINDOW_MINUTES = 5


@dataclass
class AlertRule:
    rule_id: str
    site_id: str
    name: str
    threshold: ThresholdConfig
    stream_ids: list[str]
    evaluation_window_minutes: int = DEFAULT_EVALUATION_WINDOW_MINUTES
    severity: AlertSeverity = AlertSeverity.WARNING
    is_active: bool = True
    notify_channels: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None

    def __post_init__(self) -> None:
        try:
            self.severity = AlertSeverity(self.severity)
        except ValueError:
            raise ValidationError(f"Unknown severity: {self.severity!r}") from None
        if not (self.name or "").strip():
            raise ValidationError("Rule name is required")
        if not self.stream_ids:
            raise ValidationError("Rule must target at least one stream")
        if int(self.evaluation_window_minutes) <= 0:
            raise ValidationError("evaluation_window_minutes must be positive")
        self.evaluation_window_minutes = int(self.evaluation_window_minutes)
        # Stable order, no repeats
        self.stream_ids = list(dict.fromkeys(str(s) for s in self.stream_ids))

    @property
    def rule_type(self) -> AlertRuleType:
        return self.threshold.rule_type

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.evaluation_window_minutes)

    def evaluate(self, readings: Iterable[NormalizedReading]) -> RuleEvaluation:
        """
        Judge a window of readings for one stream.

        Only Good-quality readings participate; anything else can neither
        fire nor clear an alert. Without Good readings the result is NO_DATA.
        """
        good = sorted(
            (r for r in readings if r.is_good),
            key=lambda r: (r.time, r.ingestion_timestamp),
        )
        if not good:
            return RuleEvaluation.no_data()
        return self.threshold.evaluate(good)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "site_id": self.site_id,
            "name": self.name,
            "rule_type": self.rule_type.value,
            "threshold": self.threshold.to_dict(),
            "stream_ids": list(self.stream_ids),
            "evaluation_window_minutes": self.evaluation_window_minutes,
            "severity": self.severity.value,
            "is_active": self.is_active,
            "notify_channels": list(self.notify_channels),
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "AlertRule":
        return AlertRule(
            rule_id=data["rule_id"],
            site_id=data["site_id"],
            name=data.get("name", ""),
            threshold=threshold_from_dict(data["rule_type"], data.get("threshold")),
            stream_ids=list(data.get("stream_ids") or []),
            evaluation_window_minutes=data.get("evaluation_window_minutes") or DEFAULT_EVALUATION_WINDOW_MINUTES,
            severity=data.get("severity") or AlertSeverity.WARNING,
            is_active=bool(data.get("is_active", True)),
            notify_channels=list(data.get("notify_channels") or []),
            metadata=data.get("metadata") or {},
            created_at=coerce_datetime(data.get("created_at")),
            updated_at=coerce_datetime(data.get("updated_at")),
            created_by=data.get("created_by"),
            updated_by=data.get("updated_by"),
        )
