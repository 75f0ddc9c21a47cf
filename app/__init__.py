from __future__ import annotations

import atexit
import logging
import threading
from typing import Any

from flask import Flask, request
from werkzeug.exceptions import HTTPException

from app.blueprints.api.alerts import alerts_api
from app.blueprints.api.telemetry import telemetry_api
from app.config import load_config, setup_logging


def create_app(
    config_overrides: dict[str, Any] | None = None,
    *,
    start_scheduler: bool | None = None,
    event_bus: Any | None = None,
) -> Flask:
    config = load_config()
    if config_overrides:
        for key, value in config_overrides.items():
            setattr(config, key if hasattr(config, key) else key.lower(), value)

    # Configure logging early so container startup is visible in the terminal and telemetry.log.
    setup_logging(debug=config.DEBUG)

    flask_app = Flask(__name__)
    flask_app.config.update(config.as_flask_config())
    flask_app.config["JSON_SORT_KEYS"] = False

    from app.services.container import ServiceContainer

    container = ServiceContainer.build(config, start_scheduler=start_scheduler, event_bus=event_bus)
    container.database.init_app(flask_app)
    flask_app.config["CONTAINER"] = container

    # ── Graceful shutdown ───────────────────────────────────────────
    _shutdown_lock = threading.Lock()
    _shutdown_done = False

    def _graceful_shutdown(reason: str = "unknown") -> None:
        nonlocal _shutdown_done
        with _shutdown_lock:
            if _shutdown_done:
                return
            _shutdown_done = True
        logging.info("Graceful shutdown initiated (%s)", reason)
        try:
            container.shutdown()
        except Exception as exc:
            logging.warning("Error during graceful shutdown: %s", exc)

    atexit.register(_graceful_shutdown, "atexit")
    flask_app.extensions["telemetry_shutdown"] = _graceful_shutdown

    # Global JSON error handler: anything that escapes a route on /api/ gets
    # the standard envelope instead of an HTML page or a stack trace.
    @flask_app.errorhandler(Exception)
    def _handle_unhandled(exc):
        from app.domain.exceptions import TelemetryError
        from app.utils.http import error_response, safe_error

        if not request.path.startswith("/api/"):
            if isinstance(exc, HTTPException):
                return exc
            return safe_error(exc, 500, context="unhandled")

        if isinstance(exc, HTTPException):
            status = int(exc.code or 500)
            if status >= 500:
                return safe_error(exc, status, context="http-exception")
            return error_response(exc.description or "Request failed", status)

        if isinstance(exc, TelemetryError):
            status = exc.http_status
            if status >= 500:
                return safe_error(exc, status, context=type(exc).__name__)
            return error_response(str(exc) or "Request failed", status)

        return safe_error(exc, 500, context="unhandled")

    flask_app.register_blueprint(alerts_api, url_prefix="/api/alerts")
    flask_app.register_blueprint(telemetry_api, url_prefix="/api/telemetry")

    for bp_name in flask_app.blueprints:
        logging.info(" Registered blueprint: %s", bp_name)

    logger = logging.getLogger(__name__)
    logger.info("Telemetry core initialized successfully.")
    return flask_app


def main() -> None:
    """Run the operator API with the Flask development server."""
    import os

    flask_app = create_app()
    host = os.getenv("TELEMETRY_HOST", "0.0.0.0")
    port = int(os.getenv("TELEMETRY_PORT", "8000"))
    flask_app.run(host=host, port=port, debug=flask_app.config.get("DEBUG", False), use_reloader=False)


__all__ = ["create_app", "main"]
