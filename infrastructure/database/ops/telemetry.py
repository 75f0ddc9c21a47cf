from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable, Sequence

from app.domain.exceptions import StorageError
from app.enums.telemetry import QualityCode
from infrastructure.database.sql_safety import build_insert_parts
from infrastructure.database.utils import chunked, placeholders, row_to_dict

logger = logging.getLogger(__name__)

_STREAM_JSON = ("metadata",)
_READING_JSON = ("metadata",)

_READING_COLUMNS = (
    "stream_id",
    "time",
    "value",
    "quality_code",
    "source_timestamp",
    "ingestion_timestamp",
    "message_id",
    "metadata",
)


class TelemetryOperations:
    """Database operations for sensor streams and normalized readings."""

    # --- Streams ---------------------------------------------------------------
    def insert_stream(self, row: dict[str, Any]) -> None:
        columns, marks, values = build_insert_parts(row)
        with self.transaction() as db:
            db.execute(f"INSERT INTO SensorStreams ({columns}) VALUES ({marks})", values)

    def get_stream(self, stream_id: str) -> dict[str, Any] | None:
        try:
            db = self.get_db()
            row = db.execute("SELECT * FROM SensorStreams WHERE stream_id = ?", (stream_id,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load stream {stream_id}") from exc
        return row_to_dict(row, _STREAM_JSON) if row else None

    def get_streams(self, stream_ids: Sequence[str]) -> list[dict[str, Any]]:
        ids = list(dict.fromkeys(stream_ids))
        rows: list[dict[str, Any]] = []
        try:
            db = self.get_db()
            for chunk in chunked(ids):
                cur = db.execute(
                    f"SELECT * FROM SensorStreams WHERE stream_id IN ({placeholders(len(chunk))})",
                    list(chunk),
                )
                rows.extend(row_to_dict(r, _STREAM_JSON) for r in cur.fetchall())
        except sqlite3.Error as exc:
            raise StorageError("Failed to load streams") from exc
        return rows

    def list_streams(
        self,
        site_id: str,
        equipment_id: str | None = None,
        active_only: bool = False,
    ) -> list[dict[str, Any]]:
        conditions = ["site_id = ?"]
        params: list[Any] = [site_id]
        if equipment_id is not None:
            conditions.append("equipment_id = ?")
            params.append(equipment_id)
        if active_only:
            conditions.append("is_active = 1")
        query = "SELECT * FROM SensorStreams WHERE " + " AND ".join(conditions) + " ORDER BY stream_id"
        try:
            cur = self.get_db().execute(query, params)
            return [row_to_dict(r, _STREAM_JSON) for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list streams for site {site_id}") from exc

    def update_stream(self, stream_id: str, *, updated_at: str, **fields: Any) -> bool:
        allowed = {k: v for k, v in fields.items() if k in {"equipment_id", "is_active", "name"}}
        if not allowed:
            return False
        set_clause = ", ".join(f"{k} = ?" for k in allowed)
        with self.transaction() as db:
            cur = db.execute(
                f"UPDATE SensorStreams SET {set_clause}, updated_at = ? WHERE stream_id = ?",
                [*allowed.values(), updated_at, stream_id],
            )
            return cur.rowcount > 0

    # --- Readings --------------------------------------------------------------
    def insert_readings(self, rows: Sequence[dict[str, Any]]) -> list[bool]:
        """Insert readings in one transaction.

        Rows whose (stream_id, message_id) already exists are ignored by the
        unique constraint. Returns one flag per row: True if it was stored.
        """
        if not rows:
            return []
        sql = (
            f"INSERT OR IGNORE INTO SensorReadings ({', '.join(_READING_COLUMNS)}) "
            f"VALUES ({placeholders(len(_READING_COLUMNS))})"
        )
        inserted: list[bool] = []
        with self.transaction() as db:
            for row in rows:
                cur = db.execute(sql, [row.get(col) for col in _READING_COLUMNS])
                inserted.append(cur.rowcount == 1)
        return inserted

    def find_existing_message_ids(self, stream_id: str, message_ids: Iterable[str]) -> set[str]:
        ids = [m for m in dict.fromkeys(message_ids) if m]
        found: set[str] = set()
        if not ids:
            return found
        try:
            db = self.get_db()
            for chunk in chunked(ids):
                cur = db.execute(
                    "SELECT message_id FROM SensorReadings "
                    f"WHERE stream_id = ? AND message_id IN ({placeholders(len(chunk))})",
                    [stream_id, *chunk],
                )
                found.update(r["message_id"] for r in cur.fetchall())
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to look up message ids for stream {stream_id}") from exc
        return found

    def get_readings(
        self,
        stream_id: str,
        start: str | None = None,
        end: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Most recent readings in [start, end], newest first."""
        conditions = ["stream_id = ?"]
        params: list[Any] = [stream_id]
        if start is not None:
            conditions.append("time >= ?")
            params.append(start)
        if end is not None:
            conditions.append("time <= ?")
            params.append(end)
        query = (
            "SELECT * FROM SensorReadings WHERE "
            + " AND ".join(conditions)
            + " ORDER BY time DESC, ingestion_timestamp DESC, reading_id DESC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        try:
            cur = self.get_db().execute(query, params)
            return [row_to_dict(r, _READING_JSON) for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to query readings for stream {stream_id}") from exc

    def get_latest_reading(self, stream_id: str) -> dict[str, Any] | None:
        """Newest reading by observation time, ignoring future-dated rows."""
        try:
            row = self.get_db().execute(
                "SELECT * FROM SensorReadings WHERE stream_id = ? AND quality_code != ? "
                "ORDER BY time DESC, ingestion_timestamp DESC, reading_id DESC LIMIT 1",
                (stream_id, QualityCode.BAD_FUTURE_TIMESTAMP.value),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to query latest reading for stream {stream_id}") from exc
        return row_to_dict(row, _READING_JSON) if row else None

    def count_readings(self, stream_id: str) -> int:
        try:
            row = self.get_db().execute(
                "SELECT COUNT(*) AS n FROM SensorReadings WHERE stream_id = ?", (stream_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to count readings for stream {stream_id}") from exc
        return int(row["n"]) if row else 0
