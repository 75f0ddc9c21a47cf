"""Tests for AlertRuleService."""

from __future__ import annotations

import pytest

from app.domain.alerts.thresholds import ThresholdBelow, ThresholdRange
from app.domain.exceptions import ConflictError, NotFoundError, ValidationError
from app.enums.telemetry import AlertRuleType, AlertSeverity
from conftest import OTHER_SITE_ID, SITE_ID


@pytest.fixture()
def streams(seed):
    seed.stream("temp-1")
    seed.stream("temp-2")
    seed.stream("foreign-1", site_id=OTHER_SITE_ID)


def _create(service, **overrides):
    kwargs = {
        "name": "Too hot",
        "rule_type": "threshold_above",
        "threshold": {"threshold": 85.0},
        "stream_ids": ["temp-1"],
        "created_by": "ops",
    }
    kwargs.update(overrides)
    return service.create_rule(SITE_ID, **kwargs)


class TestCreateRule:
    def test_create_and_read_back(self, alert_rule_service, streams, clock):
        rule = _create(alert_rule_service, severity="critical", notify_channels=["email"])

        stored = alert_rule_service.get_rule(rule.rule_id)
        assert stored.name == "Too hot"
        assert stored.rule_type is AlertRuleType.THRESHOLD_ABOVE
        assert stored.threshold.threshold == 85.0
        assert stored.severity is AlertSeverity.CRITICAL
        assert stored.notify_channels == ["email"]
        assert stored.created_at == clock()
        assert stored.created_by == "ops"

    def test_unknown_stream_is_rejected(self, alert_rule_service, streams):
        with pytest.raises(ValidationError) as exc:
            _create(alert_rule_service, stream_ids=["temp-1", "nope"])
        assert exc.value.detail == {"stream_ids": ["nope"]}

    def test_foreign_stream_is_rejected(self, alert_rule_service, streams):
        with pytest.raises(ValidationError, match="another site"):
            _create(alert_rule_service, stream_ids=["foreign-1"])

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": "   "},
            {"stream_ids": []},
            {"evaluation_window_minutes": 0},
            {"severity": "apocalyptic"},
            {"rule_type": "threshold_range", "threshold": {"threshold": 1.0}},
            {"rule_type": "telepathy"},
        ],
    )
    def test_invalid_rules_are_rejected(self, alert_rule_service, streams, overrides):
        with pytest.raises(ValidationError):
            _create(alert_rule_service, **overrides)
        assert alert_rule_service.list_rules(SITE_ID) == []

    def test_accepts_threshold_objects(self, alert_rule_service, streams):
        rule = _create(alert_rule_service, rule_type=AlertRuleType.THRESHOLD_BELOW, threshold=ThresholdBelow(40.0))
        assert alert_rule_service.get_rule(rule.rule_id).threshold == ThresholdBelow(40.0)

    def test_create_is_audited(self, alert_rule_service, streams, mock_audit_logger):
        rule = _create(alert_rule_service)
        kwargs = mock_audit_logger.log_event.call_args.kwargs
        assert kwargs["actor"] == "ops"
        assert kwargs["action"] == "rule.create"
        assert kwargs["resource"] == f"alert_rule:{rule.rule_id}"


class TestUpdateRule:
    def test_partial_update(self, alert_rule_service, streams, clock):
        rule = _create(alert_rule_service)
        clock.advance(minutes=5)

        updated = alert_rule_service.update_rule(
            rule.rule_id, {"name": " Hotter ", "stream_ids": ["temp-1", "temp-2"]}, updated_by="lead"
        )

        assert updated.name == "Hotter"
        assert updated.stream_ids == ["temp-1", "temp-2"]
        assert updated.threshold.threshold == 85.0
        assert updated.updated_at == clock()
        assert alert_rule_service.get_rule(rule.rule_id).updated_by == "lead"

    def test_rule_type_change_needs_threshold(self, alert_rule_service, streams):
        rule = _create(alert_rule_service)
        with pytest.raises(ValidationError, match="requires a new threshold"):
            alert_rule_service.update_rule(rule.rule_id, {"rule_type": "threshold_range"})

        updated = alert_rule_service.update_rule(
            rule.rule_id,
            {"rule_type": "threshold_range", "threshold": {"min_value": 60.0, "max_value": 80.0}},
        )
        assert updated.threshold == ThresholdRange(60.0, 80.0)

    def test_threshold_only_change_keeps_type(self, alert_rule_service, streams):
        rule = _create(alert_rule_service)
        updated = alert_rule_service.update_rule(rule.rule_id, {"threshold": {"threshold": 90.0}})
        assert updated.rule_type is AlertRuleType.THRESHOLD_ABOVE
        assert updated.threshold.threshold == 90.0

    def test_unknown_fields_are_rejected(self, alert_rule_service, streams):
        rule = _create(alert_rule_service)
        with pytest.raises(ValidationError, match="site_id"):
            alert_rule_service.update_rule(rule.rule_id, {"site_id": OTHER_SITE_ID})

    def test_stream_change_is_checked(self, alert_rule_service, streams):
        rule = _create(alert_rule_service)
        with pytest.raises(ValidationError):
            alert_rule_service.update_rule(rule.rule_id, {"stream_ids": ["foreign-1"]})
        assert alert_rule_service.get_rule(rule.rule_id).stream_ids == ["temp-1"]

    def test_unknown_rule(self, alert_rule_service):
        with pytest.raises(NotFoundError):
            alert_rule_service.update_rule("missing", {"name": "x"})


class TestActivation:
    def test_deactivate_and_activate(self, alert_rule_service, streams, mock_audit_logger):
        rule = _create(alert_rule_service)

        assert not alert_rule_service.deactivate_rule(rule.rule_id, updated_by="ops").is_active
        assert alert_rule_service.list_rules(SITE_ID, active_only=True) == []
        assert alert_rule_service.activate_rule(rule.rule_id).is_active
        assert len(alert_rule_service.list_rules(SITE_ID, active_only=True)) == 1

        actions = [c.kwargs["action"] for c in mock_audit_logger.log_event.call_args_list]
        assert actions == ["rule.create", "rule.deactivate", "rule.activate"]

    def test_unknown_rule(self, alert_rule_service):
        with pytest.raises(NotFoundError):
            alert_rule_service.activate_rule("missing")


class TestDeleteRule:
    def test_delete_refused_while_alert_active(self, alert_rule_service, alert_evaluation_service, streams):
        rule = _create(alert_rule_service)
        instance = alert_evaluation_service.fire_alert(rule, "temp-1", 90.0, 85.0)

        with pytest.raises(ConflictError):
            alert_rule_service.delete_rule(rule.rule_id)
        assert alert_rule_service.get_rule(rule.rule_id) is not None

        alert_evaluation_service.clear_alert(instance.alert_id)
        assert alert_rule_service.delete_rule(rule.rule_id, deleted_by="ops")
        with pytest.raises(NotFoundError):
            alert_rule_service.get_rule(rule.rule_id)
        # Alert history outlives the rule
        assert alert_evaluation_service.get_alert(instance.alert_id) is not None

    def test_delete_unknown(self, alert_rule_service):
        with pytest.raises(NotFoundError):
            alert_rule_service.delete_rule("missing")
