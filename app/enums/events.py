from enum import Enum
from typing import TypeAlias


class TelemetryEvent(str, Enum):
    """Topics published after readings are persisted."""

    READINGS_ACCEPTED = "telemetry.readings_accepted"
    SESSION_STARTED = "telemetry.session_started"
    SESSION_ENDED = "telemetry.session_ended"


class AlertEvent(str, Enum):
    """Topics published after an alert instance transition commits."""

    ALERT_FIRED = "alerts.fired"
    ALERT_CLEARED = "alerts.cleared"
    ALERT_ACKNOWLEDGED = "alerts.acknowledged"


EventType: TypeAlias = TelemetryEvent | AlertEvent
