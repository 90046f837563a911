"""Deduplication store: the single owner of content units, groups, and chunks.

Insert-vs-update is decided by one conditional upsert against the unique
identity index (source, scope_id, source_id); nothing here reads a row first
and writes it afterwards, and no in-process lock is taken. Embedding writes
are conditional on the content hash (units) or revision (groups) observed when
the work was fetched, so a concurrent edit always wins over a stale vector.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from lorekeeper.db.models import (
    Chunk,
    ContentUnit,
    EmbeddingStatus,
    PendingGroup,
    ScoredUnit,
    SourceKind,
)
from lorekeeper.db.vectors import (
    check_vector,
    distance_to_similarity,
    from_vec_json,
    to_vec_param,
)
from lorekeeper.errors import StorageError
from lorekeeper.ingest.normalizer import hash_content, make_group_id, make_unit_id

_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

_UNIT_COLUMNS = """
    id, source, source_id, scope_id, thread_id, parent_id, title, content,
    content_hash, author_id, author_name, occurred_at, embedding_status,
    created_at, updated_at
"""

# vec_to_json rejects NULL; pending and skipped units have no vector.
_EMBEDDING_JSON = (
    "CASE WHEN embedding IS NULL THEN NULL ELSE vec_to_json(embedding) END AS embedding_json"
)

# The backlog embeds title and content together, so either one changing
# invalidates the stored vector.
_UNCHANGED = (
    "content_units.content_hash = excluded.content_hash "
    "AND content_units.title IS excluded.title"
)


class DedupStore:
    """Data access layer for content units, thread groups, and chunk embeddings.

    Wraps an open sqlite3.Connection (sqlite-vec loaded, schema initialised).
    The connection is owned by the caller and must be closed after use.

    Args:
        conn: Open connection, see lorekeeper.db.connection.Database.
        dimensions: Expected embedding dimensionality; enforced on every write.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int = 1536) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self._conn = conn
        self.dimensions = dimensions

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def upsert(self, unit: ContentUnit) -> tuple[ContentUnit, bool]:
        """Insert *unit* or update the row with the same identity tuple.

        Returns:
            ``(stored_unit, was_inserted)``. ``was_inserted`` is False when the
            identity already existed; in that case a changed content hash
            clears the unit's embedding and, for conversation units,
            invalidates the thread's chunks.
        """
        unit.content_hash = hash_content(unit.content)
        unit.id = unit.id or make_unit_id(unit.source, unit.scope_id, unit.source_id)
        occurred = _utc_isoformat(unit.occurred_at)

        with self._operation("upsert"):
            row = self._conn.execute(
                f"""
                INSERT INTO content_units (
                    id, source, source_id, scope_id, thread_id, parent_id, title,
                    content, content_hash, previous_hash, author_id, author_name,
                    occurred_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?, ?)
                ON CONFLICT (source, scope_id, source_id) DO UPDATE SET
                    previous_hash = content_units.content_hash,
                    content = excluded.content,
                    title = excluded.title,
                    content_hash = excluded.content_hash,
                    embedding = CASE
                        WHEN {_UNCHANGED}
                        THEN content_units.embedding ELSE NULL END,
                    embedding_status = CASE
                        WHEN {_UNCHANGED}
                        THEN content_units.embedding_status ELSE 'pending' END,
                    updated_at = {_NOW}
                RETURNING {_UNIT_COLUMNS}, previous_hash
                """,
                (
                    unit.id,
                    SourceKind(unit.source).value,
                    unit.source_id,
                    unit.scope_id,
                    unit.thread_id,
                    unit.parent_id,
                    unit.title,
                    unit.content,
                    unit.content_hash,
                    unit.author_id,
                    unit.author_name,
                    occurred,
                ),
            ).fetchall()[0]

            was_inserted = row["previous_hash"] is None
            changed = was_inserted or row["previous_hash"] != row["content_hash"]
            stored = _row_to_unit(row)
            if stored.thread_id is not None and changed:
                self._invalidate_group(stored)

        return stored, was_inserted

    def _invalidate_group(self, unit: ContentUnit) -> None:
        """Reset the unit's thread to pending and drop its chunks (same transaction)."""
        group_id = make_group_id(unit.scope_id, unit.thread_id)
        self._conn.execute(
            f"""
            INSERT INTO content_groups (group_id, source, scope_id, thread_id)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (group_id) DO UPDATE SET
                revision = content_groups.revision + 1,
                embedding_status = 'pending',
                updated_at = {_NOW}
            """,
            (group_id, SourceKind.CONVERSATION.value, unit.scope_id, unit.thread_id),
        )
        self._conn.execute("DELETE FROM chunks WHERE group_id = ?", (group_id,))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_unit(self, unit_id: str, with_embedding: bool = False) -> ContentUnit | None:
        """Return a unit by id, or None if not found."""
        extra = f", {_EMBEDDING_JSON}" if with_embedding else ""
        with self._operation("get_unit"):
            row = self._conn.execute(
                f"SELECT {_UNIT_COLUMNS}{extra} FROM content_units WHERE id = ?",
                (unit_id,),
            ).fetchone()
        return _row_to_unit(row) if row else None

    def count_units(self) -> int:
        with self._operation("count_units"):
            return self._conn.execute("SELECT COUNT(*) FROM content_units").fetchone()[0]

    def get_group_units(self, group_id: str) -> list[ContentUnit]:
        """Return every message of a thread, ordered by source timestamp."""
        with self._operation("get_group_units"):
            group = self._conn.execute(
                "SELECT scope_id, thread_id FROM content_groups WHERE group_id = ?",
                (group_id,),
            ).fetchone()
            if group is None:
                return []
            rows = self._conn.execute(
                f"""
                SELECT {_UNIT_COLUMNS} FROM content_units
                WHERE source = 'conversation' AND scope_id = ? AND thread_id = ?
                ORDER BY occurred_at ASC, source_id ASC
                """,
                (group["scope_id"], group["thread_id"]),
            ).fetchall()
        return [_row_to_unit(r) for r in rows]

    def list_group_chunks(self, group_id: str) -> list[Chunk]:
        """Return stored chunks of a thread (text is not persisted, only hashes)."""
        with self._operation("list_group_chunks"):
            rows = self._conn.execute(
                """
                SELECT group_id, chunk_index, content_hash,
                       vec_to_json(embedding) AS embedding_json, created_at
                FROM chunks WHERE group_id = ? ORDER BY chunk_index
                """,
                (group_id,),
            ).fetchall()
        return [
            Chunk(
                group_id=r["group_id"],
                chunk_index=r["chunk_index"],
                text="",
                content_hash=r["content_hash"],
                embedding=from_vec_json(r["embedding_json"]),
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def get_group_status(self, group_id: str) -> EmbeddingStatus | None:
        with self._operation("get_group_status"):
            row = self._conn.execute(
                "SELECT embedding_status FROM content_groups WHERE group_id = ?",
                (group_id,),
            ).fetchone()
        return EmbeddingStatus(row["embedding_status"]) if row else None

    # ------------------------------------------------------------------
    # Embedding backlog
    # ------------------------------------------------------------------

    def fetch_missing_embeddings(self, limit: int) -> list[ContentUnit]:
        """Standalone units still waiting for a vector, oldest first."""
        with self._operation("fetch_missing_embeddings"):
            rows = self._conn.execute(
                f"""
                SELECT {_UNIT_COLUMNS} FROM content_units
                WHERE thread_id IS NULL AND embedding_status = 'pending'
                ORDER BY created_at ASC, rowid ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [_row_to_unit(r) for r in rows]

    def fetch_pending_groups(self, limit: int) -> list[PendingGroup]:
        """Threads whose chunks need (re)generating, oldest first."""
        with self._operation("fetch_pending_groups"):
            rows = self._conn.execute(
                """
                SELECT group_id, revision, scope_id, thread_id FROM content_groups
                WHERE embedding_status = 'pending'
                ORDER BY created_at ASC, rowid ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            PendingGroup(
                group_id=r["group_id"],
                revision=r["revision"],
                scope_id=r["scope_id"],
                thread_id=r["thread_id"],
            )
            for r in rows
        ]

    def count_missing(self) -> int:
        """Units plus threads that have neither a vector nor a skip marker."""
        with self._operation("count_missing"):
            units = self._conn.execute(
                "SELECT COUNT(*) FROM content_units "
                "WHERE thread_id IS NULL AND embedding_status = 'pending'"
            ).fetchone()[0]
            groups = self._conn.execute(
                "SELECT COUNT(*) FROM content_groups WHERE embedding_status = 'pending'"
            ).fetchone()[0]
        return units + groups

    def count_by_status(self) -> dict[str, dict[str, int]]:
        """``{"units": {status: n}, "groups": {status: n}, "chunks": {"total": n}}``."""
        result: dict[str, dict[str, int]] = {
            "units": {s.value: 0 for s in EmbeddingStatus},
            "groups": {s.value: 0 for s in EmbeddingStatus},
        }
        with self._operation("count_by_status"):
            for r in self._conn.execute(
                "SELECT embedding_status, COUNT(*) AS n FROM content_units "
                "WHERE thread_id IS NULL GROUP BY embedding_status"
            ):
                result["units"][r["embedding_status"]] = r["n"]
            for r in self._conn.execute(
                "SELECT embedding_status, COUNT(*) AS n FROM content_groups "
                "GROUP BY embedding_status"
            ):
                result["groups"][r["embedding_status"]] = r["n"]
            chunks = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        result["chunks"] = {"total": chunks}
        return result

    def attach_embedding(
        self, unit_id: str, vector: list[float], *, content_hash: str | None = None
    ) -> bool:
        """Store *vector* for a unit and mark it ready.

        When *content_hash* is given the write only applies if the unit still
        holds that content. Returns True if a row was updated. Attaching is
        idempotent: the last write wins.
        """
        check_vector(vector, self.dimensions)
        sql = (
            f"UPDATE content_units SET embedding = vec_f32(?), embedding_status = 'ready', "
            f"updated_at = {_NOW} WHERE id = ?"
        )
        params: tuple = (to_vec_param(vector), unit_id)
        if content_hash is not None:
            sql += " AND content_hash = ?"
            params += (content_hash,)
        with self._operation("attach_embedding"):
            cur = self._conn.execute(sql, params)
        return cur.rowcount > 0

    def mark_skipped(self, unit_id: str, *, content_hash: str | None = None) -> bool:
        """Record that a unit was rejected by the quality gate so it is never re-selected."""
        sql = (
            f"UPDATE content_units SET embedding = NULL, embedding_status = 'skipped', "
            f"updated_at = {_NOW} WHERE id = ?"
        )
        params: tuple = (unit_id,)
        if content_hash is not None:
            sql += " AND content_hash = ?"
            params += (content_hash,)
        with self._operation("mark_skipped"):
            cur = self._conn.execute(sql, params)
        return cur.rowcount > 0

    def attach_chunk_embedding(
        self,
        group_id: str,
        chunk_index: int,
        content_hash: str,
        vector: list[float],
        *,
        revision: int | None = None,
    ) -> bool:
        """Upsert one chunk vector keyed by (group_id, chunk_index).

        When *revision* is given the write only applies while the thread is
        still at that revision. Returns True if a row was written.
        """
        check_vector(vector, self.dimensions)
        guard = "revision = ?" if revision is not None else "1 = 1"
        params: tuple = (chunk_index, content_hash, to_vec_param(vector), group_id)
        if revision is not None:
            params += (revision,)
        with self._operation("attach_chunk_embedding"):
            cur = self._conn.execute(
                f"""
                INSERT INTO chunks (group_id, chunk_index, content_hash, embedding)
                SELECT group_id, ?, ?, vec_f32(?) FROM content_groups
                WHERE group_id = ? AND {guard}
                ON CONFLICT (group_id, chunk_index) DO UPDATE SET
                    content_hash = excluded.content_hash,
                    embedding = excluded.embedding,
                    created_at = {_NOW}
                """,
                params,
            )
        return cur.rowcount > 0

    def complete_group(
        self, group_id: str, revision: int, chunk_count: int, content_hash: str
    ) -> bool:
        """Mark a thread ready if it is still at *revision*.

        Chunks with an index at or beyond *chunk_count* are leftovers from a
        longer earlier version and are removed. Returns False when the thread
        was invalidated meanwhile; it then stays pending for the next tick.
        """
        with self._operation("complete_group"):
            cur = self._conn.execute(
                f"""
                UPDATE content_groups
                SET embedding_status = 'ready', content_hash = ?, updated_at = {_NOW}
                WHERE group_id = ? AND revision = ?
                """,
                (content_hash, group_id, revision),
            )
            if cur.rowcount == 0:
                return False
            self._conn.execute(
                "DELETE FROM chunks WHERE group_id = ? AND chunk_index >= ?",
                (group_id, chunk_count),
            )
        return True

    def skip_group(self, group_id: str, revision: int) -> bool:
        """Mark a low-quality thread as skipped if it is still at *revision*."""
        with self._operation("skip_group"):
            cur = self._conn.execute(
                f"""
                UPDATE content_groups
                SET embedding_status = 'skipped', updated_at = {_NOW}
                WHERE group_id = ? AND revision = ?
                """,
                (group_id, revision),
            )
            if cur.rowcount:
                self._conn.execute("DELETE FROM chunks WHERE group_id = ?", (group_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Similarity search
    # ------------------------------------------------------------------

    def search_nearest(self, vector: list[float], k: int = 10) -> list[ScoredUnit]:
        """Nearest standalone units by cosine distance, best first.

        Only units with status ``ready`` are eligible. Equal distances are
        ordered by the most recent ``occurred_at``, then by id.
        """
        check_vector(vector, self.dimensions)
        with self._operation("search_nearest"):
            rows = self._conn.execute(
                f"""
                SELECT {_UNIT_COLUMNS},
                       vec_distance_cosine(embedding, vec_f32(?)) AS distance
                FROM content_units
                WHERE thread_id IS NULL
                  AND embedding_status = 'ready'
                  AND embedding IS NOT NULL
                ORDER BY distance ASC, occurred_at DESC, id ASC
                LIMIT ?
                """,
                (to_vec_param(vector), k),
            ).fetchall()
        return [
            ScoredUnit(unit=_row_to_unit(r), similarity=distance_to_similarity(r["distance"]))
            for r in rows
        ]

    def search_nearest_groups(self, vector: list[float], k: int = 10) -> list[tuple[str, float]]:
        """Nearest threads by their best-matching chunk: ``[(group_id, similarity)]``."""
        check_vector(vector, self.dimensions)
        with self._operation("search_nearest_groups"):
            rows = self._conn.execute(
                """
                SELECT c.group_id,
                       MIN(vec_distance_cosine(c.embedding, vec_f32(?))) AS distance
                FROM chunks c
                JOIN content_groups g ON g.group_id = c.group_id
                WHERE g.embedding_status = 'ready'
                GROUP BY c.group_id
                ORDER BY distance ASC, c.group_id ASC
                LIMIT ?
                """,
                (to_vec_param(vector), k),
            ).fetchall()
        return [(r["group_id"], distance_to_similarity(r["distance"])) for r in rows]

    # ------------------------------------------------------------------
    # Error wrapping
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        """Run one store operation as a transaction; wrap sqlite errors with *name*."""
        try:
            with self._conn:
                yield
        except sqlite3.Error as exc:
            raise StorageError(name, exc) from exc


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _utc_isoformat(moment: datetime | None) -> str | None:
    """Timestamps are stored in UTC so that ``ORDER BY occurred_at`` is chronological."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def _row_to_unit(row: sqlite3.Row) -> ContentUnit:
    keys = row.keys()
    occurred = row["occurred_at"]
    embedding = from_vec_json(row["embedding_json"]) if "embedding_json" in keys else None
    return ContentUnit(
        id=row["id"],
        source=SourceKind(row["source"]),
        source_id=row["source_id"],
        scope_id=row["scope_id"],
        thread_id=row["thread_id"],
        parent_id=row["parent_id"],
        title=row["title"],
        content=row["content"],
        content_hash=row["content_hash"],
        author_id=row["author_id"],
        author_name=row["author_name"],
        occurred_at=datetime.fromisoformat(occurred) if occurred else None,
        embedding=embedding,
        embedding_status=EmbeddingStatus(row["embedding_status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
