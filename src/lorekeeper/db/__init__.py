"""lorekeeper database layer."""

from lorekeeper.db.connection import Database, connect_with_retry
from lorekeeper.db.migrations import MIGRATIONS, run_migrations
from lorekeeper.db.schema import initialize

__all__ = [
    "Database",
    "connect_with_retry",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
