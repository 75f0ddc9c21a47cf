"""
Ingestion Session Entity
========================
Tracked connection lifetime of one telemetry-producing device. Sessions are
advisory bookkeeping and never gate data acceptance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from app.enums.telemetry import IngestionProtocol
from app.utils.time import coerce_datetime


@dataclass
class IngestionSession:
    session_id: str
    site_id: str
    equipment_id: str
    protocol: IngestionProtocol
    started_at: datetime
    last_heartbeat_at: datetime
    ended_at: datetime | None = None
    message_count: int = 0
    error_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def is_stale(self, now: datetime, threshold: timedelta) -> bool:
        """An open session whose last heartbeat is older than *threshold*."""
        return self.is_active and self.last_heartbeat_at < now - threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "site_id": self.site_id,
            "equipment_id": self.equipment_id,
            "protocol": self.protocol.value,
            "started_at": self.started_at.isoformat(),
            "last_heartbeat_at": self.last_heartbeat_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "message_count": self.message_count,
            "error_count": self.error_count,
            "is_active": self.is_active,
            "metadata": self.metadata,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "IngestionSession":
        return IngestionSession(
            session_id=data["session_id"],
            site_id=data["site_id"],
            equipment_id=data["equipment_id"],
            protocol=IngestionProtocol(data["protocol"]),
            started_at=coerce_datetime(data["started_at"]),
            last_heartbeat_at=coerce_datetime(data["last_heartbeat_at"]),
            ended_at=coerce_datetime(data.get("ended_at")),
            message_count=int(data.get("message_count") or 0),
            error_count=int(data.get("error_count") or 0),
            metadata=data.get("metadata") or {},
        )
