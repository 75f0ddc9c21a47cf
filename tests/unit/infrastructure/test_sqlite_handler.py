"""Tests for SQLiteDatabaseHandler transactions and constraint mapping."""

from __future__ import annotations

import sqlite3

import pytest

from app.domain.exceptions import ConflictError, StorageError


def _count(handler, table: str) -> int:
    return handler.get_db().execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def _insert_error(db, error_type: str = "normalization") -> None:
    db.execute(
        "INSERT INTO IngestionErrors (site_id, error_type, occurred_at) VALUES (?, ?, ?)",
        ("site-1", error_type, "2026-01-15T12:00:00+00:00"),
    )


def _insert_instance(db, alert_id: str, cleared_at: str | None = None) -> None:
    db.execute(
        "INSERT INTO AlertInstances (alert_id, site_id, rule_id, stream_id, severity, fired_at, cleared_at) "
        "VALUES (?, 'site-1', 'r-1', 'temp-1', 'warning', '2026-01-15T12:00:00+00:00', ?)",
        (alert_id, cleared_at),
    )


def test_create_tables_is_idempotent(db_handler):
    db_handler.create_tables()
    assert _count(db_handler, "AlertRules") == 0


def test_transaction_commits(db_handler):
    with db_handler.transaction() as db:
        _insert_error(db)
    assert _count(db_handler, "IngestionErrors") == 1


def test_exception_rolls_back_whole_transaction(db_handler):
    with pytest.raises(RuntimeError):
        with db_handler.transaction() as db:
            _insert_error(db)
            raise RuntimeError("abort")
    assert _count(db_handler, "IngestionErrors") == 0


def test_nested_blocks_join_the_outer_transaction(db_handler):
    with pytest.raises(RuntimeError):
        with db_handler.transaction() as outer:
            _insert_error(outer, "a")
            with db_handler.transaction() as inner:
                _insert_error(inner, "b")
            raise RuntimeError("abort after inner block")
    assert _count(db_handler, "IngestionErrors") == 0


def test_sqlite_errors_surface_as_storage_error(db_handler):
    with pytest.raises(StorageError):
        with db_handler.transaction() as db:
            db.execute("SELECT * FROM NoSuchTable")


def test_integrity_errors_surface_as_conflict(db_handler):
    with pytest.raises(ConflictError) as exc:
        with db_handler.transaction() as db:
            _insert_instance(db, "a-1")
            _insert_instance(db, "a-1")
    assert isinstance(exc.value.__cause__, sqlite3.IntegrityError)
    assert _count(db_handler, "AlertInstances") == 0


def test_only_one_active_instance_per_pair(db_handler):
    with db_handler.transaction() as db:
        _insert_instance(db, "a-1", cleared_at="2026-01-15T12:01:00+00:00")
        _insert_instance(db, "a-2")

    with pytest.raises(ConflictError):
        with db_handler.transaction() as db:
            _insert_instance(db, "a-3")
    assert _count(db_handler, "AlertInstances") == 2


def test_connections_are_per_thread(file_db_handler):
    import threading

    seen = []

    def worker():
        seen.append(file_db_handler.get_db())
        file_db_handler.close_db()

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join(timeout=5)

    assert seen and seen[0] is not file_db_handler.get_db()


def test_close_db_reopens_lazily(file_db_handler):
    first = file_db_handler.get_db()
    file_db_handler.close_db()
    assert file_db_handler.get_db() is not first
