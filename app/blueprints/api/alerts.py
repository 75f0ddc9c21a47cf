"""Alerts API
=============

Operator endpoints for alert instances and alert rules.

Routes:
    GET    /api/alerts/sites/<site_id>/active         - Active alerts for a site
    GET    /api/alerts/sites/<site_id>/history        - Alert history (filterable)
    POST   /api/alerts/<alert_id>/acknowledge         - Acknowledge an active alert
    GET    /api/alerts/rules/sites/<site_id>          - List rules for a site
    POST   /api/alerts/rules/sites/<site_id>          - Create a rule
    GET    /api/alerts/rules/<rule_id>                - Get a rule
    PATCH  /api/alerts/rules/<rule_id>                - Partial update
    POST   /api/alerts/rules/<rule_id>/activate       - Activate a rule
    POST   /api/alerts/rules/<rule_id>/deactivate     - Deactivate a rule
    DELETE /api/alerts/rules/<rule_id>                - Delete a rule
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, request

from app.blueprints.api._common import get_alert_evaluation_service, get_alert_rule_service
from app.schemas.alerts import (
    AcknowledgeAlertRequest,
    CreateAlertRuleRequest,
    RuleActorRequest,
    UpdateAlertRuleRequest,
)
from app.utils.http import parse_body, query_int, safe_route, success_response

logger = logging.getLogger(__name__)

alerts_api = Blueprint("alerts_api", __name__)


def _actor() -> str | None:
    """Optional acting user for activate/deactivate/delete; the body may be empty."""
    if not request.get_data():
        return None
    return parse_body(RuleActorRequest).user


# ============================================================================
# ALERT INSTANCES
# ============================================================================


@alerts_api.get("/sites/<site_id>/active")
@safe_route("Failed to load active alerts")
def list_active_alerts(site_id: str) -> Response:
    """Active (uncleared) alerts for a site, newest first.

    Returns:
        ``{"alerts": [...], "count": <int>}``
    """
    alerts = get_alert_evaluation_service().get_active_alerts(site_id)
    return success_response({"alerts": [a.to_dict() for a in alerts], "count": len(alerts)})


@alerts_api.get("/sites/<site_id>/history")
@safe_route("Failed to load alert history")
def alert_history(site_id: str) -> Response:
    """Alert history for a site, newest first.

    Query parameters:
        rule_id   (str, optional) - filter by rule
        stream_id (str, optional) - filter by stream
        limit     (int, optional) - max rows (default 100, at most 500)
    """
    alerts = get_alert_evaluation_service().get_alert_history(
        site_id,
        rule_id=request.args.get("rule_id") or None,
        stream_id=request.args.get("stream_id") or None,
        limit=query_int("limit", 100, maximum=500),
    )
    return success_response({"alerts": [a.to_dict() for a in alerts], "count": len(alerts)})


@alerts_api.post("/<alert_id>/acknowledge")
@safe_route("Failed to acknowledge alert")
def acknowledge_alert(alert_id: str) -> Response:
    """Acknowledge an active alert. Acknowledgement never clears it.

    Body:
        ``{"user": "<name>", "notes": "<optional>"}``
    """
    body = parse_body(AcknowledgeAlertRequest)
    instance = get_alert_evaluation_service().acknowledge_alert(alert_id, body.user, body.notes)
    return success_response(instance.to_dict(), message="Alert acknowledged")


# ============================================================================
# ALERT RULES
# ============================================================================


@alerts_api.get("/rules/sites/<site_id>")
@safe_route("Failed to list alert rules")
def list_rules(site_id: str) -> Response:
    """List the rules of a site.

    Query parameters:
        active_only (bool, optional) - only active rules (default false)
    """
    active_only = request.args.get("active_only", "false").lower() in {"1", "true", "yes"}
    rules = get_alert_rule_service().list_rules(site_id, active_only=active_only)
    return success_response({"rules": [r.to_dict() for r in rules], "count": len(rules)})


@alerts_api.post("/rules/sites/<site_id>")
@safe_route("Failed to create alert rule")
def create_rule(site_id: str) -> Response:
    body = parse_body(CreateAlertRuleRequest)
    rule = get_alert_rule_service().create_rule(site_id, **body.to_service_kwargs())
    return success_response(rule.to_dict(), 201, message="Alert rule created")


@alerts_api.get("/rules/<rule_id>")
@safe_route("Failed to load alert rule")
def get_rule(rule_id: str) -> Response:
    return success_response(get_alert_rule_service().get_rule(rule_id).to_dict())


@alerts_api.patch("/rules/<rule_id>")
@safe_route("Failed to update alert rule")
def update_rule(rule_id: str) -> Response:
    """Partial update; only fields present in the body change."""
    body = parse_body(UpdateAlertRuleRequest)
    rule = get_alert_rule_service().update_rule(rule_id, body.changes(), updated_by=body.updated_by)
    return success_response(rule.to_dict(), message="Alert rule updated")


@alerts_api.post("/rules/<rule_id>/activate")
@safe_route("Failed to activate alert rule")
def activate_rule(rule_id: str) -> Response:
    rule = get_alert_rule_service().activate_rule(rule_id, updated_by=_actor())
    return success_response(rule.to_dict(), message="Alert rule activated")


@alerts_api.post("/rules/<rule_id>/deactivate")
@safe_route("Failed to deactivate alert rule")
def deactivate_rule(rule_id: str) -> Response:
    rule = get_alert_rule_service().deactivate_rule(rule_id, updated_by=_actor())
    return success_response(rule.to_dict(), message="Alert rule deactivated")


@alerts_api.delete("/rules/<rule_id>")
@safe_route("Failed to delete alert rule")
def delete_rule(rule_id: str) -> Response:
    """Delete a rule. Rules with active alerts are refused with 409."""
    get_alert_rule_service().delete_rule(rule_id, deleted_by=_actor())
    return success_response({"rule_id": rule_id, "deleted": True}, message="Alert rule deleted")
