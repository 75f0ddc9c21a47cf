from __future__ import annotations

import logging
import sqlite3
from typing import Any

from app.domain.exceptions import ConflictError, StorageError
from infrastructure.database.sql_safety import build_insert_parts, build_set_clause, safe_columns
from infrastructure.database.utils import row_to_dict

logger = logging.getLogger(__name__)

_RULE_JSON = ("threshold", "stream_ids", "notify_channels", "metadata")
_INSTANCE_JSON = ("metadata",)

RULE_UPDATE_COLUMNS = frozenset(
    {
        "name",
        "rule_type",
        "threshold",
        "stream_ids",
        "evaluation_window_minutes",
        "severity",
        "is_active",
        "notify_channels",
        "metadata",
        "updated_at",
        "updated_by",
    }
)

INSTANCE_UPDATE_COLUMNS = frozenset(
    {
        "current_value",
        "last_seen_at",
        "cleared_at",
        "acknowledged_at",
        "acknowledged_by",
        "acknowledgment_notes",
        "metadata",
    }
)


class AlertOperations:
    """Database operations for alert rules and alert instances."""

    # --- Rules -------------------------------------------------------------------
    def insert_alert_rule(self, row: dict[str, Any]) -> None:
        columns, marks, values = build_insert_parts(row)
        with self.transaction() as db:
            db.execute(f"INSERT INTO AlertRules ({columns}) VALUES ({marks})", values)

    def update_alert_rule(self, rule_id: str, changes: dict[str, Any]) -> bool:
        cols = safe_columns(changes, RULE_UPDATE_COLUMNS, context="update_alert_rule")
        if not cols:
            return False
        set_clause, values = build_set_clause(cols)
        with self.transaction() as db:
            cur = db.execute(f"UPDATE AlertRules SET {set_clause} WHERE rule_id = ?", [*values, rule_id])
            return cur.rowcount > 0

    def delete_alert_rule(self, rule_id: str) -> bool:
        """Delete a rule unless it still owns an active instance."""
        with self.transaction() as db:
            active = db.execute(
                "SELECT COUNT(*) AS n FROM AlertInstances WHERE rule_id = ? AND cleared_at IS NULL",
                (rule_id,),
            ).fetchone()
            if active and active["n"]:
                raise ConflictError(
                    "Rule has active alerts; clear or deactivate it first",
                    detail={"rule_id": rule_id, "active_alerts": active["n"]},
                )
            cur = db.execute("DELETE FROM AlertRules WHERE rule_id = ?", (rule_id,))
            return cur.rowcount > 0

    def get_alert_rule(self, rule_id: str) -> dict[str, Any] | None:
        try:
            row = self.get_db().execute("SELECT * FROM AlertRules WHERE rule_id = ?", (rule_id,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load alert rule {rule_id}") from exc
        return row_to_dict(row, _RULE_JSON) if row else None

    def list_alert_rules(self, site_id: str, active_only: bool = False) -> list[dict[str, Any]]:
        query = "SELECT * FROM AlertRules WHERE site_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at, rule_id"
        try:
            cur = self.get_db().execute(query, (site_id,))
            return [row_to_dict(r, _RULE_JSON) for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list alert rules for site {site_id}") from exc

    def list_sites_with_active_rules(self) -> list[str]:
        try:
            cur = self.get_db().execute(
                "SELECT DISTINCT site_id FROM AlertRules WHERE is_active = 1 ORDER BY site_id"
            )
            return [r["site_id"] for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError("Failed to list sites with active rules") from exc

    # --- Instances ---------------------------------------------------------------
    def get_active_alert_instance(self, rule_id: str, stream_id: str) -> dict[str, Any] | None:
        try:
            row = self.get_db().execute(
                "SELECT * FROM AlertInstances WHERE rule_id = ? AND stream_id = ? AND cleared_at IS NULL",
                (rule_id, stream_id),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load active alert for rule {rule_id}") from exc
        return row_to_dict(row, _INSTANCE_JSON) if row else None

    def get_alert_instance(self, alert_id: str) -> dict[str, Any] | None:
        try:
            row = self.get_db().execute("SELECT * FROM AlertInstances WHERE alert_id = ?", (alert_id,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load alert {alert_id}") from exc
        return row_to_dict(row, _INSTANCE_JSON) if row else None

    def insert_alert_instance(self, row: dict[str, Any]) -> None:
        """Insert a new instance; a second active one for the pair is a ConflictError."""
        columns, marks, values = build_insert_parts(row)
        with self.transaction() as db:
            try:
                db.execute(f"INSERT INTO AlertInstances ({columns}) VALUES ({marks})", values)
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    "An active alert already exists for this rule and stream",
                    detail={"rule_id": row.get("rule_id"), "stream_id": row.get("stream_id")},
                ) from exc

    def update_alert_instance(self, alert_id: str, changes: dict[str, Any]) -> bool:
        cols = safe_columns(changes, INSTANCE_UPDATE_COLUMNS, context="update_alert_instance")
        if not cols:
            return False
        set_clause, values = build_set_clause(cols)
        with self.transaction() as db:
            cur = db.execute(f"UPDATE AlertInstances SET {set_clause} WHERE alert_id = ?", [*values, alert_id])
            return cur.rowcount > 0

    def list_alert_instances(
        self,
        site_id: str,
        *,
        active_only: bool = False,
        rule_id: str | None = None,
        stream_id: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        conditions = ["site_id = ?"]
        params: list[Any] = [site_id]
        if active_only:
            conditions.append("cleared_at IS NULL")
        if rule_id is not None:
            conditions.append("rule_id = ?")
            params.append(rule_id)
        if stream_id is not None:
            conditions.append("stream_id = ?")
            params.append(stream_id)
        query = (
            "SELECT * FROM AlertInstances WHERE "
            + " AND ".join(conditions)
            + " ORDER BY fired_at DESC, alert_id LIMIT ?"
        )
        params.append(int(limit))
        try:
            cur = self.get_db().execute(query, params)
            return [row_to_dict(r, _INSTANCE_JSON) for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list alerts for site {site_id}") from exc
