from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any

from app.domain.alerts.instance import AlertInstance
from app.domain.alerts.rule import AlertRule
from app.utils.time import storage_timestamp
from infrastructure.database.ops.alerts import AlertOperations
from infrastructure.database.utils import dump_json


def _rule_row(rule: AlertRule) -> dict[str, Any]:
    return {
        "rule_id": rule.rule_id,
        "site_id": rule.site_id,
        "name": rule.name,
        "rule_type": rule.rule_type.value,
        "threshold": dump_json(rule.threshold.to_dict()),
        "stream_ids": dump_json(list(rule.stream_ids)),
        "evaluation_window_minutes": rule.evaluation_window_minutes,
        "severity": rule.severity.value,
        "is_active": int(rule.is_active),
        "notify_channels": dump_json(list(rule.notify_channels)),
        "metadata": dump_json(rule.metadata or {}),
        "created_at": storage_timestamp(rule.created_at),
        "updated_at": storage_timestamp(rule.updated_at),
        "created_by": rule.created_by,
        "updated_by": rule.updated_by,
    }


@dataclass(frozen=True)
class AlertRuleRepository:
    """Repository facade for alert rule operations."""

    _backend: AlertOperations

    def create(self, rule: AlertRule) -> AlertRule:
        self._backend.insert_alert_rule(_rule_row(rule))
        return rule

    def save(self, rule: AlertRule) -> bool:
        row = _rule_row(rule)
        for key in ("rule_id", "site_id", "created_at", "created_by"):
            row.pop(key)
        return self._backend.update_alert_rule(rule.rule_id, row)

    def set_active(self, rule_id: str, active: bool, updated_at, updated_by: str | None = None) -> bool:
        return self._backend.update_alert_rule(
            rule_id,
            {"is_active": int(active), "updated_at": storage_timestamp(updated_at), "updated_by": updated_by},
        )

    def delete(self, rule_id: str) -> bool:
        return self._backend.delete_alert_rule(rule_id)

    def get(self, rule_id: str) -> AlertRule | None:
        row = self._backend.get_alert_rule(rule_id)
        return AlertRule.from_dict(row) if row else None

    def list_by_site(self, site_id: str, active_only: bool = False) -> list[AlertRule]:
        return [AlertRule.from_dict(row) for row in self._backend.list_alert_rules(site_id, active_only)]

    def list_active(self, site_id: str) -> list[AlertRule]:
        return self.list_by_site(site_id, active_only=True)

    def sites_with_active_rules(self) -> list[str]:
        return self._backend.list_sites_with_active_rules()


@dataclass(frozen=True)
class AlertInstanceRepository:
    """Repository facade for alert instances.

    Reads and writes that must be serialized for one (rule, stream) pair are
    grouped with ``atomic()``, which holds the database write lock for the
    whole block.
    """

    _backend: AlertOperations

    def atomic(self) -> AbstractContextManager:
        return self._backend.transaction()

    def get(self, alert_id: str) -> AlertInstance | None:
        row = self._backend.get_alert_instance(alert_id)
        return AlertInstance.from_dict(row) if row else None

    def get_active(self, rule_id: str, stream_id: str) -> AlertInstance | None:
        row = self._backend.get_active_alert_instance(rule_id, stream_id)
        return AlertInstance.from_dict(row) if row else None

    def create(self, instance: AlertInstance) -> AlertInstance:
        self._backend.insert_alert_instance(
            {
                "alert_id": instance.alert_id,
                "site_id": instance.site_id,
                "rule_id": instance.rule_id,
                "stream_id": instance.stream_id,
                "severity": instance.severity.value,
                "message": instance.message,
                "triggering_value": instance.triggering_value,
                "threshold_value": instance.threshold_value,
                "current_value": instance.current_value,
                "fired_at": storage_timestamp(instance.fired_at),
                "last_seen_at": storage_timestamp(instance.last_seen_at),
                "cleared_at": storage_timestamp(instance.cleared_at),
                "acknowledged_at": storage_timestamp(instance.acknowledged_at),
                "acknowledged_by": instance.acknowledged_by,
                "acknowledgment_notes": instance.acknowledgment_notes,
                "metadata": dump_json(instance.metadata or {}),
            }
        )
        return instance

    def save_progress(self, instance: AlertInstance) -> bool:
        """Persist the mutable fields of an instance (never the firing record)."""
        return self._backend.update_alert_instance(
            instance.alert_id,
            {
                "current_value": instance.current_value,
                "last_seen_at": storage_timestamp(instance.last_seen_at),
                "cleared_at": storage_timestamp(instance.cleared_at),
                "acknowledged_at": storage_timestamp(instance.acknowledged_at),
                "acknowledged_by": instance.acknowledged_by,
                "acknowledgment_notes": instance.acknowledgment_notes,
            },
        )

    def list_active(self, site_id: str, limit: int = 500) -> list[AlertInstance]:
        rows = self._backend.list_alert_instances(site_id, active_only=True, limit=limit)
        return [AlertInstance.from_dict(row) for row in rows]

    def history(
        self,
        site_id: str,
        *,
        rule_id: str | None = None,
        stream_id: str | None = None,
        limit: int = 100,
    ) -> list[AlertInstance]:
        rows = self._backend.list_alert_instances(site_id, rule_id=rule_id, stream_id=stream_id, limit=limit)
        return [AlertInstance.from_dict(row) for row in rows]
