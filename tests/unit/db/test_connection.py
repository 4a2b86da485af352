"""Tests for the SQLite connection layer."""

from __future__ import annotations

from repochat.db.connection import Database


def test_connect_loads_sqlite_vec(tmp_path):
    conn = Database(tmp_path / "x.db").connect()
    try:
        version = conn.execute("SELECT vec_version()").fetchone()[0]
        assert version.startswith("v")
    finally:
        conn.close()


def test_connect_enables_foreign_keys_and_wal(tmp_path):
    conn = Database(tmp_path / "x.db").connect()
    try:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
    finally:
        conn.close()


def test_context_manager_closes(tmp_path):
    db = Database(tmp_path / "x.db")
    with db as conn:
        conn.execute("SELECT 1")
    assert db._conn is None
