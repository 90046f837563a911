"""Tests for Database connection layer and startup retry."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from lorekeeper.db.connection import Database, connect_with_retry
from lorekeeper.db.schema import schema_version
from lorekeeper.errors import StorageError


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".lorekeeper.db"
    db = Database(db_path)
    conn = db.connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    db = Database(tmp_path / ".lorekeeper.db")
    conn = db.connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    db = Database(tmp_path / ".lorekeeper.db")
    conn = db.connect()
    result = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    conn.close()
    assert result == 1


def test_wal_journal_mode(tmp_path):
    db = Database(tmp_path / ".lorekeeper.db")
    conn = db.connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode == "wal"


def test_row_factory_set(tmp_path):
    db = Database(tmp_path / ".lorekeeper.db")
    conn = db.connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / ".lorekeeper.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    # Connection should be closed; further use raises ProgrammingError
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


def test_context_manager_accepts_path_str(tmp_path):
    db = Database(str(tmp_path / ".lorekeeper.db"))
    assert isinstance(db.db_path, Path)
    with db as conn:
        result = conn.execute("SELECT 1").fetchone()[0]
    assert result == 1


# --- connect_with_retry ---

def test_connect_with_retry_initializes_schema(tmp_path):
    conn = connect_with_retry(Database(tmp_path / ".lorekeeper.db"), sleep=lambda s: None)
    assert schema_version(conn) == 1
    conn.close()


def test_connect_with_retry_backs_off_then_succeeds(tmp_path):
    real = Database(tmp_path / ".lorekeeper.db")
    db = MagicMock(spec=Database)
    db.db_path = real.db_path
    db.connect.side_effect = [
        sqlite3.OperationalError("database is locked"),
        sqlite3.OperationalError("database is locked"),
        real.connect(),
    ]
    sleeps: list[float] = []

    conn = connect_with_retry(db, attempts=5, initial_delay=0.5, max_delay=8.0, sleep=sleeps.append)

    assert sleeps == [0.5, 1.0]
    assert schema_version(conn) == 1
    conn.close()


def test_connect_with_retry_caps_delay_and_raises(tmp_path):
    db = MagicMock(spec=Database)
    db.db_path = tmp_path / "x.db"
    db.connect.side_effect = sqlite3.OperationalError("unable to open database file")
    sleeps: list[float] = []

    with pytest.raises(StorageError, match="open database") as exc_info:
        connect_with_retry(db, attempts=4, initial_delay=1.0, max_delay=2.0, sleep=sleeps.append)

    assert sleeps == [1.0, 2.0, 2.0]
    assert db.connect.call_count == 4
    assert isinstance(exc_info.value.cause, sqlite3.OperationalError)


def test_connect_with_retry_rejects_zero_attempts(tmp_path):
    with pytest.raises(ValueError):
        connect_with_retry(Database(tmp_path / "x.db"), attempts=0)
