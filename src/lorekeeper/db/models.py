"""Domain models for the lorekeeper database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SourceKind(str, Enum):
    CONVERSATION = "conversation"
    WIKI = "wiki"


class EmbeddingStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    SKIPPED = "skipped"  # rejected by the quality gate; never re-selected


@dataclass
class ContentUnit:
    """A stored, deduplicated piece of knowledge.

    Conversation units carry a ``thread_id`` and are embedded per thread
    (see :class:`Chunk`); wiki units are embedded individually.
    """

    source: SourceKind
    source_id: str
    content: str
    scope_id: str = ""
    title: str | None = None
    parent_id: str | None = None
    thread_id: str | None = None
    author_id: str = ""
    author_name: str = ""
    occurred_at: datetime | None = None
    id: str = ""
    content_hash: str = ""
    embedding: list[float] | None = None
    embedding_status: EmbeddingStatus = EmbeddingStatus.PENDING
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def group_id(self) -> str | None:
        """Key of the thread this unit belongs to, or None for standalone units."""
        if self.thread_id is None:
            return None
        return f"{SourceKind.CONVERSATION.value}:{self.scope_id}:{self.thread_id}"


@dataclass
class Chunk:
    group_id: str
    chunk_index: int
    text: str
    content_hash: str = ""
    embedding: list[float] | None = None
    created_at: str | None = None


@dataclass
class PendingGroup:
    """A thread whose chunks must be (re)generated, pinned to a revision."""

    group_id: str
    revision: int
    scope_id: str = ""
    thread_id: str = ""


@dataclass
class ScoredUnit:
    unit: ContentUnit
    similarity: float


@dataclass
class QueryResult:
    answer: str
    query: str
    sources: list[ScoredUnit] = field(default_factory=list)

    def to_dict(self) -> dict:
        """JSON-ready shape returned to the query caller."""
        return {
            "answer": self.answer,
            "query": self.query,
            "sources": [
                {
                    "id": s.unit.id,
                    "content": s.unit.content,
                    "source": s.unit.source.value,
                    "title": s.unit.title,
                    "user_name": s.unit.author_name,
                    "timestamp": s.unit.occurred_at.isoformat() if s.unit.occurred_at else None,
                    "similarity": round(s.similarity, 4),
                }
                for s in self.sources
            ],
        }
