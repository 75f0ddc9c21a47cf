from __future__ import annotations

import logging
import sqlite3
from typing import Any, Sequence

from app.domain.exceptions import StorageError
from infrastructure.database.sql_safety import build_insert_parts
from infrastructure.database.utils import row_to_dict

logger = logging.getLogger(__name__)

_SESSION_JSON = ("metadata",)


class SessionOperations:
    """Database operations for ingestion sessions and the ingestion error log."""

    # --- Sessions ----------------------------------------------------------------
    def insert_session(self, row: dict[str, Any]) -> None:
        columns, marks, values = build_insert_parts(row)
        with self.transaction() as db:
            db.execute(f"INSERT INTO IngestionSessions ({columns}) VALUES ({marks})", values)

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        try:
            row = self.get_db().execute(
                "SELECT * FROM IngestionSessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load session {session_id}") from exc
        return row_to_dict(row, _SESSION_JSON) if row else None

    def list_open_sessions(self, site_id: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT * FROM IngestionSessions WHERE ended_at IS NULL"
        params: list[Any] = []
        if site_id is not None:
            query += " AND site_id = ?"
            params.append(site_id)
        query += " ORDER BY started_at"
        try:
            cur = self.get_db().execute(query, params)
            return [row_to_dict(r, _SESSION_JSON) for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError("Failed to list open sessions") from exc

    def touch_session(self, session_id: str, heartbeat_at: str) -> bool:
        """Record a heartbeat on an open session. Ended sessions are untouched."""
        with self.transaction() as db:
            cur = db.execute(
                "UPDATE IngestionSessions SET last_heartbeat_at = ? WHERE session_id = ? AND ended_at IS NULL",
                (heartbeat_at, session_id),
            )
            return cur.rowcount > 0

    def close_session(self, session_id: str, ended_at: str) -> bool:
        """Close an open session. Returns False if unknown or already ended."""
        with self.transaction() as db:
            cur = db.execute(
                "UPDATE IngestionSessions SET ended_at = ? WHERE session_id = ? AND ended_at IS NULL",
                (ended_at, session_id),
            )
            return cur.rowcount > 0

    def close_stale_sessions(self, heartbeat_cutoff: str, ended_at: str) -> int:
        """Close every open session whose last heartbeat is older than the cutoff."""
        with self.transaction() as db:
            cur = db.execute(
                "UPDATE IngestionSessions SET ended_at = ? WHERE ended_at IS NULL AND last_heartbeat_at < ?",
                (ended_at, heartbeat_cutoff),
            )
            return cur.rowcount

    def add_session_counts(self, session_id: str, messages: int, errors: int) -> bool:
        with self.transaction() as db:
            cur = db.execute(
                "UPDATE IngestionSessions SET message_count = message_count + ?, error_count = error_count + ? "
                "WHERE session_id = ?",
                (int(messages), int(errors), session_id),
            )
            return cur.rowcount > 0

    # --- Ingestion errors --------------------------------------------------------
    def insert_ingestion_errors(self, rows: Sequence[dict[str, Any]]) -> int:
        if not rows:
            return 0
        columns = (
            "site_id",
            "session_id",
            "stream_id",
            "message_id",
            "error_type",
            "error_message",
            "occurred_at",
        )
        with self.transaction() as db:
            db.executemany(
                f"INSERT INTO IngestionErrors ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                [[row.get(col) for col in columns] for row in rows],
            )
        return len(rows)

    def get_recent_ingestion_errors(self, site_id: str, limit: int) -> list[dict[str, Any]]:
        try:
            cur = self.get_db().execute(
                "SELECT * FROM IngestionErrors WHERE site_id = ? ORDER BY occurred_at DESC, error_id DESC LIMIT ?",
                (site_id, int(limit)),
            )
            return [row_to_dict(r) for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load ingestion errors for site {site_id}") from exc
