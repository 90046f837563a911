"""Forward-only migration runner for the lorekeeper database schema.

Embeddings are stored as sqlite-vec float32 blobs in ordinary tables and
compared with vec_distance_cosine(); no vec0 virtual tables are involved.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS content_units (
    id                TEXT PRIMARY KEY,
    source            TEXT NOT NULL CHECK (source IN ('conversation', 'wiki')),
    source_id         TEXT NOT NULL,
    scope_id          TEXT NOT NULL DEFAULT '',
    thread_id         TEXT,
    parent_id         TEXT,
    title             TEXT,
    content           TEXT NOT NULL,
    content_hash      TEXT NOT NULL,
    previous_hash     TEXT,
    author_id         TEXT NOT NULL DEFAULT '',
    author_name       TEXT NOT NULL DEFAULT '',
    occurred_at       TEXT,
    embedding         BLOB,
    embedding_status  TEXT NOT NULL DEFAULT 'pending'
                      CHECK (embedding_status IN ('pending', 'ready', 'skipped')),
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_units_identity
    ON content_units(source, scope_id, source_id);
CREATE INDEX IF NOT EXISTS idx_units_hash ON content_units(content_hash);
CREATE INDEX IF NOT EXISTS idx_units_pending
    ON content_units(embedding_status, created_at);
CREATE INDEX IF NOT EXISTS idx_units_thread
    ON content_units(scope_id, thread_id, occurred_at);

CREATE TABLE IF NOT EXISTS content_groups (
    group_id          TEXT PRIMARY KEY,
    source            TEXT NOT NULL DEFAULT 'conversation',
    scope_id          TEXT NOT NULL,
    thread_id         TEXT NOT NULL,
    revision          INTEGER NOT NULL DEFAULT 1,
    content_hash      TEXT,
    embedding_status  TEXT NOT NULL DEFAULT 'pending'
                      CHECK (embedding_status IN ('pending', 'ready', 'skipped')),
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_groups_pending
    ON content_groups(embedding_status, created_at);

CREATE TABLE IF NOT EXISTS chunks (
    group_id      TEXT NOT NULL REFERENCES content_groups(group_id) ON DELETE CASCADE,
    chunk_index   INTEGER NOT NULL,
    content_hash  TEXT NOT NULL,
    embedding     BLOB NOT NULL,
    created_at    TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    PRIMARY KEY (group_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_hash ON chunks(content_hash);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
