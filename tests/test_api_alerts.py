"""
Alerts API tests: rule management and alert instance endpoints.

Every response uses the ``{"ok", "data", "error"}`` envelope.
"""

from __future__ import annotations

import pytest

from app.domain.telemetry.stream import SensorStream
from conftest import OTHER_SITE_ID, SITE_ID, raw

RULE_BODY = {
    "name": "Too hot",
    "threshold": {"rule_type": "threshold_above", "threshold": 85.0},
    "stream_ids": ["temp-1"],
    "created_by": "ops",
}


@pytest.fixture()
def streams(container):
    container.stream_repo.register(SensorStream("temp-1", SITE_ID, "temperature"))
    container.stream_repo.register(SensorStream("foreign-1", OTHER_SITE_ID, "temperature"))


@pytest.fixture()
def rule(client, streams):
    resp = client.post(f"/api/alerts/rules/sites/{SITE_ID}", json=RULE_BODY)
    assert resp.status_code == 201
    return resp.get_json()["data"]


@pytest.fixture()
def active_alert(container, rule):
    container.ingest_service.ingest_batch(SITE_ID, [raw("temp-1", 95)])
    summary = container.alert_evaluation_service.evaluate_rules(SITE_ID)
    assert summary.fired == 1
    return container.alert_evaluation_service.get_active_alerts(SITE_ID)[0]


class TestRuleEndpoints:
    def test_create_rule(self, rule):
        assert rule["name"] == "Too hot"
        assert rule["rule_type"] == "threshold_above"
        assert rule["threshold"] == {"rule_type": "threshold_above", "threshold": 85.0}
        assert rule["is_active"] is True

    def test_create_rejects_mismatched_threshold_shape(self, client, streams):
        body = dict(RULE_BODY, threshold={"rule_type": "threshold_range", "threshold": 85.0})
        resp = client.post(f"/api/alerts/rules/sites/{SITE_ID}", json=body)

        assert resp.status_code == 400
        payload = resp.get_json()
        assert payload["ok"] is False
        assert payload["data"] is None
        assert payload["error"]["details"]["errors"]

    def test_create_rejects_foreign_stream(self, client, streams):
        body = dict(RULE_BODY, stream_ids=["foreign-1"])
        resp = client.post(f"/api/alerts/rules/sites/{SITE_ID}", json=body)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["details"] == {"stream_ids": ["foreign-1"]}

    def test_create_requires_json(self, client, streams):
        resp = client.post(f"/api/alerts/rules/sites/{SITE_ID}", data="nope", content_type="text/plain")
        assert resp.status_code == 400

    def test_list_and_get(self, client, rule):
        listed = client.get(f"/api/alerts/rules/sites/{SITE_ID}").get_json()["data"]
        assert listed["count"] == 1
        assert listed["rules"][0]["rule_id"] == rule["rule_id"]

        fetched = client.get(f"/api/alerts/rules/{rule['rule_id']}").get_json()
        assert fetched["ok"] is True
        assert fetched["data"]["name"] == "Too hot"

    def test_get_unknown_rule(self, client):
        resp = client.get("/api/alerts/rules/missing")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["message"] == "Alert rule missing not found"

    def test_patch_rule(self, client, rule):
        resp = client.patch(
            f"/api/alerts/rules/{rule['rule_id']}",
            json={"threshold": {"rule_type": "threshold_below", "threshold": 40.0}, "updated_by": "lead"},
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["rule_type"] == "threshold_below"
        assert data["updated_by"] == "lead"

    def test_deactivate_and_activate(self, client, rule):
        resp = client.post(f"/api/alerts/rules/{rule['rule_id']}/deactivate")
        assert resp.get_json()["data"]["is_active"] is False
        active_only = client.get(f"/api/alerts/rules/sites/{SITE_ID}?active_only=true").get_json()["data"]
        assert active_only["count"] == 0

        resp = client.post(f"/api/alerts/rules/{rule['rule_id']}/activate", json={"user": "ops"})
        assert resp.get_json()["data"]["is_active"] is True

    def test_delete_refused_while_alert_active(self, client, rule, active_alert, container):
        resp = client.delete(f"/api/alerts/rules/{rule['rule_id']}")
        assert resp.status_code == 409
        assert resp.get_json()["error"]["details"]["active_alerts"] == 1

        container.alert_evaluation_service.clear_alert(active_alert.alert_id)
        resp = client.delete(f"/api/alerts/rules/{rule['rule_id']}")
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"rule_id": rule["rule_id"], "deleted": True}


class TestAlertEndpoints:
    def test_active_alerts(self, client, active_alert):
        data = client.get(f"/api/alerts/sites/{SITE_ID}/active").get_json()["data"]
        assert data["count"] == 1
        assert data["alerts"][0]["alert_id"] == active_alert.alert_id
        assert data["alerts"][0]["triggering_value"] == 95.0

    def test_active_alerts_are_site_scoped(self, client, active_alert):
        data = client.get(f"/api/alerts/sites/{OTHER_SITE_ID}/active").get_json()["data"]
        assert data == {"alerts": [], "count": 0}

    def test_history_filters(self, client, active_alert, rule):
        url = f"/api/alerts/sites/{SITE_ID}/history"
        assert client.get(url).get_json()["data"]["count"] == 1
        assert client.get(f"{url}?rule_id={rule['rule_id']}&limit=5").get_json()["data"]["count"] == 1
        assert client.get(f"{url}?stream_id=other").get_json()["data"]["count"] == 0

    def test_history_rejects_bad_limit(self, client):
        resp = client.get(f"/api/alerts/sites/{SITE_ID}/history?limit=many")
        assert resp.status_code == 400

    def test_acknowledge(self, client, active_alert):
        resp = client.post(
            f"/api/alerts/{active_alert.alert_id}/acknowledge", json={"user": "ops", "notes": "on it"}
        )
        assert resp.status_code == 200
        payload = resp.get_json()
        assert payload["message"] == "Alert acknowledged"
        assert payload["data"]["acknowledged_by"] == "ops"
        assert payload["data"]["is_active"] is True

    def test_acknowledge_requires_user(self, client, active_alert):
        resp = client.post(f"/api/alerts/{active_alert.alert_id}/acknowledge", json={"user": "   "})
        assert resp.status_code == 400

    def test_acknowledge_unknown_alert(self, client):
        resp = client.post("/api/alerts/missing/acknowledge", json={"user": "ops"})
        assert resp.status_code == 404

    def test_acknowledge_cleared_alert_conflicts(self, client, container, active_alert):
        container.alert_evaluation_service.clear_alert(active_alert.alert_id)
        resp = client.post(f"/api/alerts/{active_alert.alert_id}/acknowledge", json={"user": "ops"})
        assert resp.status_code == 409


def test_unknown_api_route_uses_envelope(client):
    resp = client.get("/api/alerts/nowhere/at/all")
    assert resp.status_code == 404
    assert resp.get_json()["ok"] is False
