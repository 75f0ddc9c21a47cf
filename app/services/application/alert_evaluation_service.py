"""
Alert Evaluation Service
========================
Periodically judges active alert rules against recent Good-quality readings
and moves each (rule, stream) pair through its alert state machine::

    Inactive --breach--> Active --normal--> Inactive (cleared)

Each pair's read-decide-write runs inside one ``BEGIN IMMEDIATE`` transaction,
and the database holds a partial unique index on active instances, so
overlapping evaluators can never leave two active instances for a pair.
Failures are isolated per pair; one bad stream never aborts a sweep.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from app.domain.alerts.instance import AlertInstance, plan_transition
from app.domain.alerts.rule import AlertRule
from app.domain.alerts.thresholds import RuleEvaluation
from app.domain.exceptions import ConflictError, NotFoundError, ValidationError
from app.enums.events import AlertEvent
from app.enums.telemetry import AlertTransition, EvaluationState
from app.utils.time import Clock, utc_now
from infrastructure.database.repositories.alerts import AlertInstanceRepository, AlertRuleRepository
from infrastructure.database.repositories.telemetry import ReadingRepository
from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_MAX_READINGS_PER_PAIR = 1000
MAX_HISTORY_LIMIT = 500


@dataclass(frozen=True)
class PairOutcome:
    """What one evaluation did to one (rule, stream) pair."""

    rule_id: str
    stream_id: str
    transition: AlertTransition
    state: EvaluationState | None = None
    value: float | None = None
    alert_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "stream_id": self.stream_id,
            "transition": self.transition.value,
            "state": self.state.value if self.state else None,
            "value": self.value,
            "alert_id": self.alert_id,
            "error": self.error,
        }


@dataclass
class EvaluationSummary:
    """Counts for one evaluation tick over a site."""

    site_id: str
    as_of: datetime
    rules: int = 0
    pairs: int = 0
    fired: int = 0
    refreshed: int = 0
    cleared: int = 0
    no_data: int = 0
    errors: int = 0
    outcomes: list[PairOutcome] = field(default_factory=list)

    def add(self, outcome: PairOutcome) -> None:
        self.pairs += 1
        self.outcomes.append(outcome)
        if outcome.transition == AlertTransition.FIRED:
            self.fired += 1
        elif outcome.transition == AlertTransition.REFRESHED:
            self.refreshed += 1
        elif outcome.transition == AlertTransition.CLEARED:
            self.cleared += 1
        elif outcome.transition == AlertTransition.ERROR:
            self.errors += 1
        if outcome.state == EvaluationState.NO_DATA:
            self.no_data += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_id": self.site_id,
            "as_of": self.as_of.isoformat(),
            "rules": self.rules,
            "pairs": self.pairs,
            "fired": self.fired,
            "refreshed": self.refreshed,
            "cleared": self.cleared,
            "no_data": self.no_data,
            "errors": self.errors,
        }


class AlertEvaluationService:
    """Evaluates alert rules and owns the lifecycle of alert instances."""

    def __init__(
        self,
        *,
        rule_repo: AlertRuleRepository,
        instance_repo: AlertInstanceRepository,
        reading_repo: ReadingRepository,
        event_bus: Any | None = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
        max_readings_per_pair: int = DEFAULT_MAX_READINGS_PER_PAIR,
    ) -> None:
        self.rule_repo = rule_repo
        self.instance_repo = instance_repo
        self.reading_repo = reading_repo
        self.event_bus = event_bus
        self.audit_logger = audit_logger
        self._clock = clock
        self.max_readings_per_pair = max_readings_per_pair

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_rules(self, site_id: str, as_of: datetime | None = None) -> EvaluationSummary:
        """
        Evaluate every active rule of a site.

        Raises:
            StorageError: The rules could not be loaded (the whole tick fails)
        """
        as_of = as_of or self._clock()
        summary = EvaluationSummary(site_id=site_id, as_of=as_of)
        for rule in self.rule_repo.list_active(site_id):
            summary.rules += 1
            for outcome in self.evaluate_rule(rule, as_of):
                summary.add(outcome)

        if summary.fired or summary.cleared or summary.errors:
            logger.info(
                "Alert tick for site %s: %d rules, %d pairs, %d fired, %d cleared, %d errors",
                site_id,
                summary.rules,
                summary.pairs,
                summary.fired,
                summary.cleared,
                summary.errors,
            )
        return summary

    def evaluate_all(self, as_of: datetime | None = None) -> dict[str, EvaluationSummary]:
        """Evaluate every site that has active rules; a failing site does not stop the others."""
        as_of = as_of or self._clock()
        results: dict[str, EvaluationSummary] = {}
        for site_id in self.rule_repo.sites_with_active_rules():
            try:
                results[site_id] = self.evaluate_rules(site_id, as_of)
            except Exception:
                logger.exception("Alert evaluation failed for site %s", site_id)
        return results

    def evaluate_rule(self, rule: AlertRule, as_of: datetime | None = None) -> list[PairOutcome]:
        """Evaluate one rule against each of its target streams."""
        as_of = as_of or self._clock()
        start = as_of - rule.window
        outcomes: list[PairOutcome] = []
        for stream_id in rule.stream_ids:
            try:
                readings = self.reading_repo.get_readings(stream_id, start, as_of, self.max_readings_per_pair)
                evaluation = rule.evaluate(readings)
                outcomes.append(self._apply(rule, stream_id, evaluation, as_of))
            except Exception as exc:
                logger.exception("Evaluation of rule %s on stream %s failed", rule.rule_id, stream_id)
                outcomes.append(PairOutcome(rule.rule_id, stream_id, AlertTransition.ERROR, error=str(exc)))
        return outcomes

    def _apply(
        self,
        rule: AlertRule,
        stream_id: str,
        evaluation: RuleEvaluation,
        as_of: datetime,
    ) -> PairOutcome:
        with self.instance_repo.atomic():
            active = self.instance_repo.get_active(rule.rule_id, stream_id)
            transition = plan_transition(active, evaluation)
            instance = active
            if transition == AlertTransition.FIRED:
                instance = self.instance_repo.create(
                    AlertInstance.fire(
                        site_id=rule.site_id,
                        rule_id=rule.rule_id,
                        stream_id=stream_id,
                        severity=rule.severity,
                        value=evaluation.current_value,
                        threshold=evaluation.threshold_value,
                        message=f"{rule.name}: {evaluation.message}",
                        fired_at=as_of,
                    )
                )
            elif transition == AlertTransition.REFRESHED:
                active.refresh(evaluation.current_value, as_of)
                self.instance_repo.save_progress(active)
            elif transition == AlertTransition.CLEARED:
                active.refresh(evaluation.current_value, as_of)
                active.clear(as_of)
                self.instance_repo.save_progress(active)

        if transition == AlertTransition.FIRED:
            logger.warning("Alert fired: rule=%s stream=%s value=%s", rule.rule_id, stream_id, evaluation.current_value)
            self._publish(AlertEvent.ALERT_FIRED, instance)
        elif transition == AlertTransition.CLEARED:
            logger.info("Alert cleared: rule=%s stream=%s", rule.rule_id, stream_id)
            self._publish(AlertEvent.ALERT_CLEARED, instance)

        return PairOutcome(
            rule_id=rule.rule_id,
            stream_id=stream_id,
            transition=transition,
            state=evaluation.state,
            value=evaluation.current_value,
            alert_id=instance.alert_id if instance else None,
        )

    # ------------------------------------------------------------------
    # Direct instance operations
    # ------------------------------------------------------------------

    def fire_alert(
        self,
        rule: AlertRule,
        stream_id: str,
        current_value: float | None,
        threshold_value: float | None,
        message: str | None = None,
        as_of: datetime | None = None,
    ) -> AlertInstance:
        """Fire an alert for a pair, or return the one already active."""
        if stream_id not in rule.stream_ids:
            raise ValidationError(f"Stream {stream_id} is not targeted by rule {rule.rule_id}")
        as_of = as_of or self._clock()
        with self.instance_repo.atomic():
            active = self.instance_repo.get_active(rule.rule_id, stream_id)
            if active is not None:
                return active
            instance = self.instance_repo.create(
                AlertInstance.fire(
                    site_id=rule.site_id,
                    rule_id=rule.rule_id,
                    stream_id=stream_id,
                    severity=rule.severity,
                    value=current_value,
                    threshold=threshold_value,
                    message=message or f"{rule.name}: threshold breached",
                    fired_at=as_of,
                )
            )
        self._publish(AlertEvent.ALERT_FIRED, instance)
        return instance

    def clear_alert(self, alert_id: str, cleared_at: datetime | None = None) -> bool:
        """
        Clear an alert. Returns False if it was already cleared.

        Raises:
            NotFoundError: Unknown alert id
        """
        cleared_at = cleared_at or self._clock()
        with self.instance_repo.atomic():
            instance = self.instance_repo.get(alert_id)
            if instance is None:
                raise NotFoundError(f"Alert {alert_id} not found")
            if not instance.clear(cleared_at):
                return False
            self.instance_repo.save_progress(instance)
        self._publish(AlertEvent.ALERT_CLEARED, instance)
        return True

    def acknowledge_alert(
        self,
        alert_id: str,
        user: str,
        notes: str | None = None,
        site_id: str | None = None,
    ) -> AlertInstance:
        """
        Record that an operator has seen an active alert.

        Acknowledgement never clears the alert; only Normal evaluations do.

        Raises:
            ValidationError: Missing user
            NotFoundError: Unknown alert, or alert of another site
            ConflictError: Alert already cleared
        """
        if not (user or "").strip():
            raise ValidationError("user is required to acknowledge an alert")
        with self.instance_repo.atomic():
            instance = self.instance_repo.get(alert_id)
            if instance is None or (site_id is not None and instance.site_id != site_id):
                raise NotFoundError(f"Alert {alert_id} not found")
            if not instance.is_active:
                raise ConflictError(
                    f"Alert {alert_id} is already cleared",
                    detail={"alert_id": alert_id, "cleared_at": instance.cleared_at.isoformat()},
                )
            instance.acknowledge(user.strip(), self._clock(), notes)
            self.instance_repo.save_progress(instance)

        if self.audit_logger is not None:
            self.audit_logger.log_event(
                actor=instance.acknowledged_by,
                action="alert.acknowledge",
                resource=f"alert:{alert_id}",
                outcome="success",
                site_id=instance.site_id,
                rule_id=instance.rule_id,
                notes=notes,
            )
        self._publish(AlertEvent.ALERT_ACKNOWLEDGED, instance)
        return instance

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_alerts(self, site_id: str) -> list[AlertInstance]:
        return self.instance_repo.list_active(site_id)

    def get_alert(self, alert_id: str) -> AlertInstance | None:
        return self.instance_repo.get(alert_id)

    def get_alert_history(
        self,
        site_id: str,
        rule_id: str | None = None,
        stream_id: str | None = None,
        limit: int = 100,
    ) -> list[AlertInstance]:
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        return self.instance_repo.history(site_id, rule_id=rule_id, stream_id=stream_id, limit=limit)

    def _publish(self, event: AlertEvent, instance: AlertInstance | None) -> None:
        if self.event_bus is None or instance is None:
            return
        try:
            self.event_bus.publish(event, instance.to_dict())
        except Exception:
            logger.exception("Failed to publish %s for alert %s", event.value, instance.alert_id)
