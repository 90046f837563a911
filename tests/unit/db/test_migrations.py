"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

from lorekeeper.db.connection import Database
from lorekeeper.db.migrations import MIGRATIONS, run_migrations


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    db = Database(tmp_path / "test.db")
    return db.connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def _index_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' AND name=?", (name,)
    ).fetchone() is not None


# --- Bootstrap ---

def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


# --- Idempotency ---

def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Tables and indexes ---

@pytest.mark.parametrize("table", ["content_units", "content_groups", "chunks"])
def test_run_migrations_creates_tables(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


def test_identity_index_is_unique(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _index_exists(conn, "idx_units_identity")
    conn.execute(
        "INSERT INTO content_units (id, source, source_id, scope_id, content, content_hash) "
        "VALUES ('a', 'wiki', 'p1', 'post', 'x', 'h')"
    )
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO content_units (id, source, source_id, scope_id, content, content_hash) "
            "VALUES ('b', 'wiki', 'p1', 'post', 'y', 'h2')"
        )
    conn.close()


def test_source_check_constraint(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO content_units (id, source, source_id, content, content_hash) "
            "VALUES ('a', 'email', '1', 'x', 'h')"
        )
    conn.close()


def test_chunks_cascade_with_group(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    conn.execute(
        "INSERT INTO content_groups (group_id, source, scope_id, thread_id) "
        "VALUES ('conversation:C1:1', 'conversation', 'C1', '1')"
    )
    conn.execute(
        "INSERT INTO chunks (group_id, chunk_index, content_hash, embedding) "
        "VALUES ('conversation:C1:1', 0, 'h', vec_f32('[1, 0, 0]'))"
    )
    conn.execute("DELETE FROM content_groups")
    assert conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 0
    conn.close()
