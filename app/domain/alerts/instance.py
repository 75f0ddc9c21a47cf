"""
Alert Instance Entity
=====================
Stateful record of one rule's breach against one stream, from firing to
clearing. Instances are never deleted; clearing preserves the firing record.

State machine per (rule, stream)::

    Inactive --breach--> Active --normal--> Inactive (cleared)

A cleared instance is never reactivated: the next breach creates a new one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.domain.alerts.thresholds import RuleEvaluation
from app.enums.telemetry import AlertSeverity, AlertTransition, EvaluationState
from app.utils.time import coerce_datetime


@dataclass
class AlertInstance:
    alert_id: str
    site_id: str
    rule_id: str
    stream_id: str
    severity: AlertSeverity
    message: str
    triggering_value: float | None
    threshold_value: float | None
    fired_at: datetime
    current_value: float | None = None
    last_seen_at: datetime | None = None
    cleared_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledgment_notes: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.cleared_at is None

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    @classmethod
    def fire(
        cls,
        *,
        site_id: str,
        rule_id: str,
        stream_id: str,
        severity: AlertSeverity,
        value: float | None,
        threshold: float | None,
        message: str,
        fired_at: datetime,
    ) -> "AlertInstance":
        return cls(
            alert_id=uuid.uuid4().hex,
            site_id=site_id,
            rule_id=rule_id,
            stream_id=stream_id,
            severity=AlertSeverity(severity),
            message=message,
            triggering_value=value,
            threshold_value=threshold,
            fired_at=fired_at,
            current_value=value,
            last_seen_at=fired_at,
        )

    def refresh(self, value: float | None, seen_at: datetime) -> None:
        """Update the last-seen value while active; the firing record is kept."""
        self.current_value = value
        self.last_seen_at = seen_at

    def clear(self, cleared_at: datetime) -> bool:
        """Close the instance. Returns False if it was already cleared."""
        if self.cleared_at is not None:
            return False
        self.cleared_at = cleared_at
        return True

    def acknowledge(self, user: str, acknowledged_at: datetime, notes: str | None = None) -> None:
        self.acknowledged_at = acknowledged_at
        self.acknowledged_by = user
        self.acknowledgment_notes = notes

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "site_id": self.site_id,
            "rule_id": self.rule_id,
            "stream_id": self.stream_id,
            "severity": self.severity.value,
            "message": self.message,
            "triggering_value": self.triggering_value,
            "threshold_value": self.threshold_value,
            "current_value": self.current_value,
            "fired_at": self.fired_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "cleared_at": self.cleared_at.isoformat() if self.cleared_at else None,
            "is_active": self.is_active,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
            "acknowledgment_notes": self.acknowledgment_notes,
            "metadata": self.metadata,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "AlertInstance":
        return AlertInstance(
            alert_id=data["alert_id"],
            site_id=data["site_id"],
            rule_id=data["rule_id"],
            stream_id=data["stream_id"],
            severity=AlertSeverity(data["severity"]),
            message=data.get("message") or "",
            triggering_value=data.get("triggering_value"),
            threshold_value=data.get("threshold_value"),
            fired_at=coerce_datetime(data["fired_at"]),
            current_value=data.get("current_value"),
            last_seen_at=coerce_datetime(data.get("last_seen_at")),
            cleared_at=coerce_datetime(data.get("cleared_at")),
            acknowledged_at=coerce_datetime(data.get("acknowledged_at")),
            acknowledged_by=data.get("acknowledged_by"),
            acknowledgment_notes=data.get("acknowledgment_notes"),
            metadata=data.get("metadata") or {},
        )


def plan_transition(
    active: AlertInstance | None,
    evaluation: RuleEvaluation,
) -> AlertTransition:
    """
    Decide what an evaluation does to the (rule, stream) pair.

    Args:
        active: The currently active instance for the pair, if any
        evaluation: Judgment of the rule over Good readings in the window

    Returns:
        FIRED, REFRESHED, CLEARED or NOOP
    """
    if evaluation.state == EvaluationState.NO_DATA:
        return AlertTransition.NOOP
    if evaluation.state == EvaluationState.BREACHED:
        return AlertTransition.REFRESHED if active is not None else AlertTransition.FIRED
    if active is not None:
        return AlertTransition.CLEARED
    return AlertTransition.NOOP
