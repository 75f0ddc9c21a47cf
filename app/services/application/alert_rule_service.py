"""Operator-facing management of alert rules."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Iterable, Optional

from app.domain.alerts.rule import DEFAULT_EVALUATION_WINDOW_MINUTES, AlertRule
from app.domain.alerts.thresholds import ThresholdConfig, threshold_from_dict
from app.domain.exceptions import NotFoundError, ValidationError
from app.enums.telemetry import AlertRuleType, AlertSeverity
from app.utils.time import Clock, utc_now
from infrastructure.database.repositories.alerts import AlertRuleRepository
from infrastructure.database.repositories.telemetry import StreamRepository
from infrastructure.logging.audit import AuditLogger

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "rule_type",
        "threshold",
        "stream_ids",
        "evaluation_window_minutes",
        "severity",
        "is_active",
        "notify_channels",
        "metadata",
    }
)


class AlertRuleService:
    """CRUD for alert rules. The evaluation engine only ever reads them."""

    def __init__(
        self,
        rule_repo: AlertRuleRepository,
        stream_repo: StreamRepository,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.rule_repo = rule_repo
        self.stream_repo = stream_repo
        self.audit_logger = audit_logger
        self._clock = clock

    def list_rules(self, site_id: str, active_only: bool = False) -> list[AlertRule]:
        return self.rule_repo.list_by_site(site_id, active_only=active_only)

    def get_rule(self, rule_id: str) -> AlertRule:
        rule = self.rule_repo.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Alert rule {rule_id} not found")
        return rule

    def create_rule(
        self,
        site_id: str,
        *,
        name: str,
        rule_type: AlertRuleType | str,
        threshold: ThresholdConfig | dict[str, Any],
        stream_ids: Iterable[str],
        evaluation_window_minutes: int = DEFAULT_EVALUATION_WINDOW_MINUTES,
        severity: AlertSeverity | str = AlertSeverity.WARNING,
        is_active: bool = True,
        notify_channels: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> AlertRule:
        """
        Create a rule for a site.

        Raises:
            ValidationError: Bad threshold shape, or a stream that is unknown
                or belongs to another site
        """
        now = self._clock()
        rule = AlertRule(
            rule_id=uuid.uuid4().hex,
            site_id=site_id,
            name=(name or "").strip(),
            threshold=self._threshold(rule_type, threshold),
            stream_ids=list(stream_ids or []),
            evaluation_window_minutes=evaluation_window_minutes,
            severity=severity,
            is_active=is_active,
            notify_channels=list(notify_channels or []),
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
            created_by=created_by,
            updated_by=created_by,
        )
        self._check_streams(site_id, rule.stream_ids)
        self.rule_repo.create(rule)
        logger.info("Alert rule %s (%s) created for site %s", rule.rule_id, rule.rule_type.value, site_id)
        self._audit(created_by, "rule.create", rule, name=rule.name, rule_type=rule.rule_type.value)
        return rule

    def update_rule(self, rule_id: str, changes: dict[str, Any], updated_by: str | None = None) -> AlertRule:
        """
        Apply a partial update.

        Changing ``rule_type`` requires a matching ``threshold`` in the same
        update; the stored threshold of another shape is never reinterpreted.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        current = self.get_rule(rule_id)

        threshold = current.threshold
        if "rule_type" in changes or "threshold" in changes:
            rule_type = changes.get("rule_type") or current.rule_type
            raw = changes.get("threshold")
            if raw is None:
                if AlertRuleType(rule_type) != current.rule_type:
                    raise ValidationError("Changing rule_type requires a new threshold")
                raw = current.threshold
            threshold = self._threshold(rule_type, raw)

        fields = {k: v for k, v in changes.items() if k not in ("rule_type", "threshold")}
        if "name" in fields:
            fields["name"] = (fields["name"] or "").strip()
        if "notify_channels" in fields:
            fields["notify_channels"] = list(fields["notify_channels"] or [])
        if "metadata" in fields:
            fields["metadata"] = dict(fields["metadata"] or {})
        updated = replace(
            current,
            threshold=threshold,
            updated_at=self._clock(),
            updated_by=updated_by,
            **fields,
        )
        if "stream_ids" in changes:
            self._check_streams(updated.site_id, updated.stream_ids)

        if not self.rule_repo.save(updated):
            raise NotFoundError(f"Alert rule {rule_id} not found")
        logger.info("Alert rule %s updated (%s)", rule_id, ", ".join(sorted(changes)) or "no fields")
        self._audit(updated_by, "rule.update", updated, fields=sorted(changes))
        return updated

    def activate_rule(self, rule_id: str, updated_by: str | None = None) -> AlertRule:
        return self._set_active(rule_id, True, updated_by)

    def deactivate_rule(self, rule_id: str, updated_by: str | None = None) -> AlertRule:
        """Stop evaluating a rule. Its active alerts stay as they are until cleared."""
        return self._set_active(rule_id, False, updated_by)

    def delete_rule(self, rule_id: str, deleted_by: str | None = None) -> bool:
        """
        Delete a rule that has no active alerts. Alert history is kept.

        Raises:
            NotFoundError: Unknown rule
            ConflictError: The rule still has active alert instances
        """
        rule = self.get_rule(rule_id)
        deleted = self.rule_repo.delete(rule_id)
        if deleted:
            logger.info("Alert rule %s deleted", rule_id)
            self._audit(deleted_by, "rule.delete", rule)
        return deleted

    # --- helpers ---------------------------------------------------------
    def _set_active(self, rule_id: str, active: bool, updated_by: str | None) -> AlertRule:
        self.get_rule(rule_id)
        self.rule_repo.set_active(rule_id, active, self._clock(), updated_by)
        rule = self.get_rule(rule_id)
        self._audit(updated_by, "rule.activate" if active else "rule.deactivate", rule)
        return rule

    @staticmethod
    def _threshold(rule_type: AlertRuleType | str, threshold: ThresholdConfig | dict[str, Any]) -> ThresholdConfig:
        if isinstance(threshold, ThresholdConfig):
            threshold = threshold.to_dict()
        if not isinstance(threshold, dict):
            raise ValidationError("threshold must be an object")
        return threshold_from_dict(rule_type, threshold)

    def _check_streams(self, site_id: str, stream_ids: list[str]) -> None:
        streams = self.stream_repo.get_many(stream_ids)
        missing = [s for s in stream_ids if s not in streams]
        if missing:
            raise ValidationError("Unknown streams", detail={"stream_ids": missing})
        foreign = [s for s in stream_ids if streams[s].site_id != site_id]
        if foreign:
            raise ValidationError("Streams belong to another site", detail={"stream_ids": foreign})

    def _audit(self, actor: str | None, action: str, rule: AlertRule, **meta: Any) -> None:
        if self.audit_logger is None:
            return
        self.audit_logger.log_event(
            actor=actor or "system",
            action=action,
            resource=f"alert_rule:{rule.rule_id}",
            outcome="success",
            site_id=rule.site_id,
            **meta,
        )
