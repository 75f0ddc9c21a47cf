import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict

AUDIT_LOGGER_NAME = "telemetry.audit"


class AuditLogger:
    """
    Append-only JSON-lines record of operator actions.

    Acknowledgements and alert rule changes are written here so they can be
    reviewed independently of the application log.
    """

    def __init__(self, log_path: str, level: str = "INFO", *, max_bytes: int = 10 * 1024 * 1024) -> None:
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self.logger.propagate = False

        target = str(self.log_path.resolve())
        already_attached = any(
            isinstance(handler, RotatingFileHandler) and handler.baseFilename == target
            for handler in self.logger.handlers
        )
        if not already_attached:
            handler = RotatingFileHandler(
                filename=str(self.log_path),
                maxBytes=max_bytes,
                backupCount=30,
                encoding="utf-8",
                delay=True,
            )
            handler.setFormatter(
                logging.Formatter(fmt="%(asctime)sZ | %(levelname)s | %(message)s", datefmt="%Y-%m-%dT%H:%M:%S")
            )
            self.logger.addHandler(handler)

    def log_event(self, actor: str, action: str, resource: str, outcome: str, **metadata: Any) -> None:
        """
        Write one audit record.

        Args:
            actor: User or system component performing the action
            action: Verb such as ``alert.acknowledge`` or ``rule.update``
            resource: Identifier of the affected object, e.g. ``alert:<id>``
            outcome: ``success`` or a short failure reason
            **metadata: Extra JSON-serializable context
        """
        payload: Dict[str, Any] = {
            "actor": actor or "unknown",
            "action": action,
            "resource": resource,
            "outcome": outcome,
        }
        if metadata:
            payload["meta"] = metadata
        self.logger.info(json.dumps(payload, default=str, sort_keys=True))
