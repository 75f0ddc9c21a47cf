from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Callable

from flask import Response, jsonify, request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.domain.exceptions import TelemetryError, ValidationError
from app.utils.time import coerce_datetime, iso_now

_log = logging.getLogger(__name__)

# Generic user-facing messages for 5xx responses; internals are only logged
_GENERIC_MESSAGES: dict[int, str] = {
    400: "Invalid request",
    404: "Resource not found",
    409: "Conflict",
    500: "An internal error occurred",
    503: "Storage temporarily unavailable",
}


def safe_error(exc: BaseException, status: int = 500, *, context: str = "") -> Response:
    """Log the real exception and return a generic message for *status*."""
    _log.error("API error [%s] %s: %s", status, context, exc, exc_info=exc)
    return error_response(_GENERIC_MESSAGES.get(status, _GENERIC_MESSAGES[500]), status)


def success_response(data: Any = None, status: int = 200, *, message: str | None = None) -> Response:
    payload: dict[str, Any] = {"ok": True, "data": data, "error": None}
    if message is not None:
        payload["message"] = message
    response = jsonify(payload)
    response.status_code = status
    return response


def error_response(message: str, status: int = 500, *, details: dict | None = None) -> Response:
    error: dict[str, Any] = {"message": message, "timestamp": iso_now()}
    if details:
        error["details"] = details
    response = jsonify({"ok": False, "data": None, "error": error})
    response.status_code = status
    return response


def parse_body(model: type[BaseModel]) -> BaseModel:
    """
    Validate the JSON request body against a pydantic model.

    Raises:
        ValidationError: Missing/invalid JSON or a schema violation
    """
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError("Request body failed validation", detail={"errors": errors}) from None


def query_datetime(name: str) -> datetime | None:
    """Parse an optional ISO-8601 query parameter."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    parsed = coerce_datetime(raw)
    if parsed is None:
        raise ValidationError(f"Query parameter '{name}' must be an ISO-8601 timestamp")
    return parsed


def query_int(name: str, default: int, *, minimum: int = 1, maximum: int | None = None) -> int:
    """Parse an optional integer query parameter, clamped to [minimum, maximum]."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter '{name}' must be an integer") from None
    value = max(minimum, value)
    return min(value, maximum) if maximum is not None else value


def safe_route(error_message: str = "An internal error occurred", *, error_status: int = 500) -> Callable:
    """Wrap a route handler with standardized error handling.

    :class:`~app.domain.exceptions.TelemetryError` subclasses map to their
    ``http_status``; client errors (4xx) keep their message and detail, server
    errors are logged and answered generically. Any other exception becomes
    *error_status*.

    Usage::

        @alerts_api.get("/sites/<site_id>/active")
        @safe_route("Failed to load active alerts")
        def list_active_alerts(site_id):
            ...
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                return fn(*args, **kwargs)
            except TelemetryError as exc:
                status = exc.http_status
                if status >= 500:
                    return safe_error(exc, status, context=error_message)
                return error_response(str(exc) or error_message, status, details=exc.detail or None)
            except Exception as exc:
                return safe_error(exc, error_status, context=error_message)

        return wrapper

    return decorator
