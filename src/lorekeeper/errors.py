"""Error taxonomy shared by the ingestion, backlog, and query paths.

Quality rejection is deliberately absent: rejecting low-value content is an
outcome (see lorekeeper.ingest.quality.QualityVerdict), not a fault.
"""

from __future__ import annotations


class LorekeeperError(Exception):
    """Base class for all errors raised by the lorekeeper core."""


class ValidationError(LorekeeperError, ValueError):
    """Input rejected before any external call (empty query, wrong vector size)."""


class ProviderError(LorekeeperError):
    """Embedding or text-generation provider call failed.

    Covers timeouts, quota errors, and malformed responses.
    """


class StorageError(LorekeeperError):
    """Persistence layer failure, always carrying the failed operation's name."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")
