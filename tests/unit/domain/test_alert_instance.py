from datetime import datetime, timedelta, timezone

from app.domain.alerts.instance import AlertInstance, plan_transition
from app.domain.alerts.thresholds import RuleEvaluation
from app.enums.telemetry import AlertSeverity, AlertTransition, EvaluationState

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _instance():
    return AlertInstance.fire(
        site_id="site-1",
        rule_id="r-1",
        stream_id="temp-1",
        severity=AlertSeverity.CRITICAL,
        value=20.0,
        threshold=10.0,
        message="hot",
        fired_at=T0,
    )


class TestPlanTransition:
    def test_breach_without_active_fires(self):
        assert plan_transition(None, RuleEvaluation(EvaluationState.BREACHED, 20)) == AlertTransition.FIRED

    def test_breach_with_active_refreshes(self):
        assert plan_transition(_instance(), RuleEvaluation(EvaluationState.BREACHED, 25)) == AlertTransition.REFRESHED

    def test_normal_with_active_clears(self):
        assert plan_transition(_instance(), RuleEvaluation(EvaluationState.NORMAL, 5)) == AlertTransition.CLEARED

    def test_normal_without_active_is_noop(self):
        assert plan_transition(None, RuleEvaluation(EvaluationState.NORMAL, 5)) == AlertTransition.NOOP

    def test_no_data_never_changes_state(self):
        assert plan_transition(None, RuleEvaluation.no_data()) == AlertTransition.NOOP
        assert plan_transition(_instance(), RuleEvaluation.no_data()) == AlertTransition.NOOP


class TestAlertInstance:
    def test_refresh_keeps_firing_record(self):
        instance = _instance()
        instance.refresh(30.0, T0 + timedelta(minutes=1))
        assert instance.triggering_value == 20.0
        assert instance.current_value == 30.0
        assert instance.fired_at == T0

    def test_clear_is_one_way(self):
        instance = _instance()
        assert instance.clear(T0 + timedelta(minutes=2))
        assert not instance.is_active
        assert not instance.clear(T0 + timedelta(minutes=3))
        assert instance.cleared_at == T0 + timedelta(minutes=2)

    def test_acknowledge_does_not_clear(self):
        instance = _instance()
        instance.acknowledge("ops", T0, "looking")
        assert instance.is_acknowledged
        assert instance.is_active

    def test_round_trips_through_dict(self):
        instance = _instance()
        copy = AlertInstance.from_dict(instance.to_dict())
        assert copy.alert_id == instance.alert_id
        assert copy.severity is AlertSeverity.CRITICAL
        assert copy.fired_at == T0
