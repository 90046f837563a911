"""Ingestion entry points for chat messages, chat threads, and wiki content.

These are the calls a chat listener or webhook receiver makes after it has
authenticated and parsed a delivery. Each one normalizes, applies the
platform-specific skip rules, and upserts into the deduplication store.
Embedding happens later, in the backlog processor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from lorekeeper.db.models import ContentUnit, SourceKind
from lorekeeper.db.store import DedupStore
from lorekeeper.errors import ValidationError
from lorekeeper.ingest.normalizer import normalize
from lorekeeper.ingest.threads import parse_message_ts

_log = logging.getLogger(__name__)

POST_EVENTS = frozenset({"post.published", "post.updated"})
COMMENT_EVENTS = frozenset({"comment.created", "comment.updated"})

WIKI_POST_SCOPE = "post"
WIKI_COMMENT_SCOPE = "comment"


@dataclass
class IngestResult:
    """Outcome of ingesting one message, post, or comment.

    Attributes:
        status: ``inserted``, ``updated``, or ``skipped``.
        unit: The stored unit (None when skipped).
        reason: Why the item was skipped.
    """

    status: str
    unit: ContentUnit | None = None
    reason: str = ""

    @property
    def stored(self) -> bool:
        return self.status != "skipped"

    @property
    def was_inserted(self) -> bool:
        return self.status == "inserted"

    @classmethod
    def skipped(cls, reason: str) -> IngestResult:
        return cls(status="skipped", reason=reason)


@dataclass
class ThreadIngestReport:
    thread_id: str
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0


class Ingestor:
    """Normalize raw deliveries and hand them to the deduplication store.

    Args:
        store: Deduplication store.
        min_chars: Non-root chat messages shorter than this are not stored.
        logger: Logger to report skips on.
    """

    def __init__(
        self,
        store: DedupStore,
        *,
        min_chars: int = 10,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self.min_chars = min_chars
        self._log = logger or _log

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    def ingest_message(
        self,
        channel_id: str,
        ts: str,
        text: str,
        *,
        thread_ts: str | None = None,
        user_id: str = "",
        user_name: str = "",
        bot: bool = False,
    ) -> IngestResult:
        """Store one chat message.

        A message whose ``thread_ts`` is None or equal to ``ts`` is a thread
        root. Bot messages and messages that are empty after cleaning are
        skipped; so are non-root messages shorter than ``min_chars``.
        """
        if not channel_id or not ts:
            raise ValidationError("channel_id and ts are required.")
        if bot:
            return self._skip(ts, "bot message")

        content = normalize(text or "")
        if not content:
            return self._skip(ts, "empty after cleaning")

        root = thread_ts or ts
        if root != ts and len(content) < self.min_chars:
            return self._skip(ts, f"shorter than {self.min_chars} characters")

        unit = ContentUnit(
            source=SourceKind.CONVERSATION,
            source_id=ts,
            scope_id=channel_id,
            thread_id=root,
            content=content,
            author_id=user_id,
            author_name=user_name or user_id,
            occurred_at=parse_message_ts(ts),
        )
        return self._store_unit(unit)

    def ingest_thread(
        self,
        channel_id: str,
        thread_ts: str,
        messages: Iterable[Mapping[str, Any]],
    ) -> ThreadIngestReport:
        """Store every message of a thread fetched from the chat platform.

        Each mapping carries ``ts`` and ``text`` plus optional ``user_id``
        (or ``user``), ``user_name``, and bot markers (``bot``, ``bot_id``,
        ``subtype == "bot_message"``).
        """
        report = ThreadIngestReport(thread_id=thread_ts)
        for msg in messages:
            report.processed += 1
            result = self.ingest_message(
                channel_id,
                str(msg.get("ts", "")),
                msg.get("text") or "",
                thread_ts=thread_ts,
                user_id=msg.get("user_id") or msg.get("user") or "",
                user_name=msg.get("user_name") or "",
                bot=_is_bot(msg),
            )
            if result.status == "inserted":
                report.inserted += 1
            elif result.status == "updated":
                report.updated += 1
            else:
                report.skipped += 1

        self._log.info(
            "Thread %s: %d processed, %d new, %d updated, %d skipped",
            thread_ts, report.processed, report.inserted, report.updated, report.skipped,
        )
        return report

    # ------------------------------------------------------------------
    # Wiki
    # ------------------------------------------------------------------

    def ingest_wiki_post(
        self,
        post_id: str,
        title: str,
        content: str,
        *,
        author_id: str = "",
        author_name: str = "",
        occurred_at: datetime | None = None,
    ) -> IngestResult:
        if not post_id:
            raise ValidationError("post_id is required.")
        if not content:
            return self._skip(post_id, "empty content")
        cleaned = normalize(content, markup=True)
        if not cleaned:
            return self._skip(post_id, "empty after cleaning")

        return self._store_unit(
            ContentUnit(
                source=SourceKind.WIKI,
                source_id=post_id,
                scope_id=WIKI_POST_SCOPE,
                title=title or None,
                content=cleaned,
                author_id=author_id,
                author_name=author_name,
                occurred_at=occurred_at,
            )
        )

    def ingest_wiki_comment(
        self,
        comment_id: str,
        post_id: str,
        content: str,
        *,
        author_id: str = "",
        author_name: str = "",
        occurred_at: datetime | None = None,
    ) -> IngestResult:
        if not comment_id:
            raise ValidationError("comment_id is required.")
        if not content:
            return self._skip(comment_id, "empty content")
        cleaned = normalize(content, markup=True)
        if not cleaned:
            return self._skip(comment_id, "empty after cleaning")

        return self._store_unit(
            ContentUnit(
                source=SourceKind.WIKI,
                source_id=comment_id,
                scope_id=WIKI_COMMENT_SCOPE,
                parent_id=post_id or None,
                content=cleaned,
                author_id=author_id,
                author_name=author_name,
                occurred_at=occurred_at,
            )
        )

    def ingest_wiki_event(self, event: str, data: Mapping[str, Any]) -> IngestResult:
        """Dispatch a parsed wiki webhook payload by event type."""
        author = data.get("author") or {}
        kwargs = dict(
            author_id=str(author.get("id", "")),
            author_name=str(author.get("name", "")),
            occurred_at=parse_iso_timestamp(data.get("created_at")),
        )
        if event in POST_EVENTS:
            return self.ingest_wiki_post(
                str(data.get("id", "")), data.get("title") or "", data.get("content") or "", **kwargs
            )
        if event in COMMENT_EVENTS:
            return self.ingest_wiki_comment(
                str(data.get("id", "")), str(data.get("post_id") or ""), data.get("content") or "",
                **kwargs,
            )
        self._log.info("Unhandled wiki event type: %s", event)
        return IngestResult.skipped(f"unhandled event {event!r}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _store_unit(self, unit: ContentUnit) -> IngestResult:
        stored, was_inserted = self._store.upsert(unit)
        status = "inserted" if was_inserted else "updated"
        self._log.debug("Stored %s (%s)", stored.id, status)
        return IngestResult(status=status, unit=stored)

    def _skip(self, item_id: str, reason: str) -> IngestResult:
        self._log.debug("Skipping %s: %s", item_id, reason)
        return IngestResult.skipped(reason)


def _is_bot(msg: Mapping[str, Any]) -> bool:
    return bool(msg.get("bot") or msg.get("bot_id") or msg.get("subtype") == "bot_message")


def parse_iso_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment
