"""Telemetry API
================

Read-only operator endpoints over ingested telemetry.

Routes:
    GET /api/telemetry/sites/<site_id>/errors          - Recent ingestion errors
    GET /api/telemetry/streams/<stream_id>/readings    - Readings in a time range
    GET /api/telemetry/streams/<stream_id>/latest      - Latest reading of a stream
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response

from app.blueprints.api._common import get_ingest_service
from app.utils.http import error_response, query_datetime, query_int, safe_route, success_response

logger = logging.getLogger(__name__)

telemetry_api = Blueprint("telemetry_api", __name__)


@telemetry_api.get("/sites/<site_id>/errors")
@safe_route("Failed to load ingestion errors")
def recent_errors(site_id: str) -> Response:
    """Most recent ingestion errors for a site, newest first.

    Query parameters:
        limit (int, optional) - max rows (default 50, at most 200)
    """
    errors = get_ingest_service().get_recent_errors(site_id, query_int("limit", 50, maximum=200))
    return success_response({"errors": errors, "count": len(errors)})


@telemetry_api.get("/streams/<stream_id>/readings")
@safe_route("Failed to load readings")
def list_readings(stream_id: str) -> Response:
    """Readings of a stream ordered by observation time.

    Query parameters:
        start (str, optional) - ISO-8601 inclusive lower bound
        end   (str, optional) - ISO-8601 inclusive upper bound
        limit (int, optional) - max rows (default 1000, at most 10000)
    """
    readings = get_ingest_service().get_readings(
        stream_id,
        start=query_datetime("start"),
        end=query_datetime("end"),
        limit=query_int("limit", 1000, maximum=10_000),
    )
    return success_response({"readings": [r.to_dict() for r in readings], "count": len(readings)})


@telemetry_api.get("/streams/<stream_id>/latest")
@safe_route("Failed to load latest reading")
def latest_reading(stream_id: str) -> Response:
    reading = get_ingest_service().get_latest_reading(stream_id)
    if reading is None:
        return error_response(f"No readings for stream {stream_id}", 404)
    return success_response(reading.to_dict())
