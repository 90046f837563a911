"""SQLite connection layer with sqlite-vec extension and startup retry."""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path

import sqlite_vec

from lorekeeper.errors import StorageError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10.0


class Database:
    """Per-project SQLite database with sqlite-vec vector functions loaded."""

    def __init__(self, db_path: Path | str, timeout: float = _DEFAULT_TIMEOUT) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            timeout: Seconds a statement waits on a locked database before failing.
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self, check_same_thread: bool = True) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection.

        Pass ``check_same_thread=False`` when the connection is handed to the
        backlog worker thread.
        """
        conn = sqlite3.connect(
            self.db_path, timeout=self.timeout, check_same_thread=check_same_thread
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


def connect_with_retry(
    db: Database,
    attempts: int = 5,
    initial_delay: float = 0.5,
    max_delay: float = 8.0,
    check_same_thread: bool = True,
    sleep=time.sleep,
) -> sqlite3.Connection:
    """Open and initialise *db*, retrying with capped exponential backoff.

    Startup concern only: the core components never retry storage calls.

    Raises:
        StorageError: After *attempts* consecutive failures.
    """
    from lorekeeper.db.schema import initialize

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delay = initial_delay
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        conn: sqlite3.Connection | None = None
        try:
            conn = db.connect(check_same_thread=check_same_thread)
            initialize(conn)
            return conn
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            last_exc = exc
            if attempt == attempts:
                break
            logger.warning(
                "Database open failed (attempt %d/%d): %s; retrying in %.2fs",
                attempt,
                attempts,
                exc,
                delay,
            )
            sleep(delay)
            delay = min(delay * 2, max_delay)

    raise StorageError(f"open database {db.db_path}", last_exc)
