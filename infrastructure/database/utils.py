"""
Database Utilities
==================

Shared row helpers for the ops mixins.
"""

import json
from typing import Any, Iterable, Iterator, Sequence, TypeVar

T = TypeVar("T")

# Keep IN (...) lists well under SQLITE_MAX_VARIABLE_NUMBER on older builds.
MAX_IN_PARAMS = 500


def dump_json(value: Any) -> str | None:
    """Serialize a JSON column value (None stays NULL)."""
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"), default=str)


def row_to_dict(row, json_fields: Iterable[str] = ()) -> dict[str, Any]:
    """
    Convert database row to dictionary, decoding JSON text columns.

    Args:
        row: Database row (sqlite3.Row, dict, or None)
        json_fields: Column names stored as JSON text

    Returns:
        Dictionary representation of the row (empty for None)
    """
    if row is None:
        return {}
    data = dict(row) if isinstance(row, dict) else {k: row[k] for k in row.keys()}
    for name in json_fields:
        raw = data.get(name)
        if isinstance(raw, str) and raw:
            data[name] = json.loads(raw)
    return data


def chunked(items: Sequence[T], size: int = MAX_IN_PARAMS) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of *items* no longer than *size*."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def placeholders(count: int) -> str:
    """Return ``?, ?, ...`` for an IN clause of *count* parameters."""
    return ", ".join("?" for _ in range(count))
