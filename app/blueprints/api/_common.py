"""
Blueprint Common Utilities
==========================

Shared helper functions for the API blueprints.
Import these instead of duplicating helper code in each blueprint.

Usage:
    from app.blueprints.api._common import (
        get_container, get_alert_evaluation_service, get_alert_rule_service,
        get_ingest_service,
    )
"""
from __future__ import annotations

import logging

from flask import current_app

logger = logging.getLogger("api._common")

# ============================================================================
# CONTAINER ACCESS
# ============================================================================


def get_container():
    """
    Get the service container from Flask app config.

    Returns:
        ServiceContainer: The application service container

    Raises:
        RuntimeError: If container is not configured
    """
    container = current_app.config.get("CONTAINER")
    if not container:
        raise RuntimeError("ServiceContainer not found in app config")
    return container


# ============================================================================
# SERVICE ACCESSORS
# ============================================================================


def _service(attr: str, label: str):
    container = get_container()
    service = getattr(container, attr, None)
    if service is None:
        raise RuntimeError(f"{label} not available")
    return service


def get_alert_evaluation_service():
    """
    Get alert evaluation service from container.

    Raises:
        RuntimeError: If service not available
    """
    return _service("alert_evaluation_service", "Alert evaluation service")


def get_alert_rule_service():
    """Get alert rule service from container."""
    return _service("alert_rule_service", "Alert rule service")


def get_ingest_service():
    """Get telemetry ingest service from container."""
    return _service("ingest_service", "Telemetry ingest service")
