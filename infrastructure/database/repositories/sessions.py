from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from app.domain.telemetry.session import IngestionSession
from app.utils.time import storage_timestamp
from infrastructure.database.ops.sessions import SessionOperations
from infrastructure.database.utils import dump_json


@dataclass(frozen=True)
class IngestionSessionRepository:
    """Repository facade for ingestion session operations."""

    _backend: SessionOperations

    def create(self, session: IngestionSession) -> IngestionSession:
        self._backend.insert_session(
            {
                "session_id": session.session_id,
                "site_id": session.site_id,
                "equipment_id": session.equipment_id,
                "protocol": session.protocol.value,
                "started_at": storage_timestamp(session.started_at),
                "last_heartbeat_at": storage_timestamp(session.last_heartbeat_at),
                "ended_at": storage_timestamp(session.ended_at),
                "message_count": session.message_count,
                "error_count": session.error_count,
                "metadata": dump_json(session.metadata or {}),
            }
        )
        return session

    def get(self, session_id: str) -> IngestionSession | None:
        row = self._backend.get_session(session_id)
        return IngestionSession.from_dict(row) if row else None

    def list_open(self, site_id: str | None = None) -> list[IngestionSession]:
        return [IngestionSession.from_dict(row) for row in self._backend.list_open_sessions(site_id)]

    def heartbeat(self, session_id: str, at: datetime) -> bool:
        return self._backend.touch_session(session_id, storage_timestamp(at))

    def end(self, session_id: str, at: datetime) -> bool:
        return self._backend.close_session(session_id, storage_timestamp(at))

    def end_stale(self, heartbeat_cutoff: datetime, at: datetime) -> int:
        return self._backend.close_stale_sessions(storage_timestamp(heartbeat_cutoff), storage_timestamp(at))

    def add_counts(self, session_id: str, messages: int, errors: int) -> bool:
        return self._backend.add_session_counts(session_id, messages, errors)


@dataclass(frozen=True)
class IngestionErrorRepository:
    """Append-only log of readings rejected by the pipeline."""

    _backend: SessionOperations

    def record_many(self, rows: Sequence[dict[str, Any]]) -> int:
        return self._backend.insert_ingestion_errors(
            [{**row, "occurred_at": storage_timestamp(row["occurred_at"])} for row in rows]
        )

    def recent(self, site_id: str, limit: int) -> list[dict[str, Any]]:
        return self._backend.get_recent_ingestion_errors(site_id, limit)
