"""Tests for the repochat migration runner."""

from __future__ import annotations

import sqlite3

from repochat.db.migrations import CURRENT_VERSION, MIGRATIONS, initialize, run_migrations


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {r[0] for r in rows}


def test_initialize_creates_tables(tmp_db):
    tables = _tables(tmp_db)
    assert {"projects", "documents", "chat_messages", "user_usage", "schema_version"} <= tables


def test_initialize_records_current_version(tmp_db):
    version = tmp_db.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION == MIGRATIONS[-1][0]


def test_run_migrations_idempotent(tmp_db):
    run_migrations(tmp_db)
    initialize(tmp_db)
    count = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)


def test_vec_tables_not_migration_managed(tmp_db):
    assert not any(t.startswith("vec_documents_") for t in _tables(tmp_db))
