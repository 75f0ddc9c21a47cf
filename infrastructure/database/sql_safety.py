"""
SQL Safety Utilities
====================

Helpers that prevent SQL-injection via dict-key to column-name interpolation.

``safe_columns()`` filters a mapping so that only keys matching an explicit
allowlist reach a ``SET ...`` or ``INSERT ... VALUES`` SQL fragment. Unknown
keys are dropped and logged.

Usage::

    from infrastructure.database.sql_safety import build_set_clause, safe_columns

    cols = safe_columns(changes, RULE_UPDATE_COLUMNS, context="update_alert_rule")
    set_clause, values = build_set_clause(cols)
    db.execute(f"UPDATE AlertRules SET {set_clause} WHERE rule_id = ?", [*values, rule_id])
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# Column names must be simple identifiers: letters, digits, underscores.
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def safe_columns(
    data: dict[str, Any],
    allowed: frozenset[str] | set[str],
    *,
    context: str = "",
) -> dict[str, Any]:
    """Return *data* filtered to keys present in *allowed*."""
    filtered: dict[str, Any] = {}
    rejected: list[str] = []

    for key, value in data.items():
        if key not in allowed or not _IDENT_RE.match(key):
            rejected.append(key)
            continue
        filtered[key] = value

    if rejected:
        logger.warning(
            "safe_columns(%s): dropped non-allowed keys: %s",
            context or "?",
            rejected,
        )

    return filtered


def build_set_clause(cols: dict[str, Any]) -> tuple[str, list[Any]]:
    """Build a ``SET col1 = ?, col2 = ?`` fragment from *cols*.

    >>> build_set_clause({"name": "Night heat", "is_active": 1})
    ('name = ?, is_active = ?', ['Night heat', 1])
    """
    clause = ", ".join(f"{k} = ?" for k in cols)
    return clause, list(cols.values())


def build_insert_parts(cols: dict[str, Any]) -> tuple[str, str, list[Any]]:
    """Build column-list, placeholder-list, and values for INSERT.

    >>> build_insert_parts({"stream_id": "s-1", "site_id": "site-a"})
    ('stream_id, site_id', '?, ?', ['s-1', 'site-a'])
    """
    keys = list(cols.keys())
    columns_sql = ", ".join(keys)
    placeholders_sql = ", ".join("?" for _ in keys)
    return columns_sql, placeholders_sql, list(cols.values())
