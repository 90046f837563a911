"""Thread transcript builder for conversation groups."""

from __future__ import annotations

from datetime import datetime, timezone

from lorekeeper.db.models import ContentUnit


def parse_message_ts(ts: str) -> datetime | None:
    """Convert a chat timestamp like ``"1734277500.000200"`` to an aware UTC datetime."""
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def format_timestamp(moment: datetime) -> str:
    """Human-readable stamp, e.g. ``December 15, 2024, 3:45PM`` (UTC)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{moment:%B} {moment.day}, {moment.year}, {hour}:{moment:%M}{meridiem}"


def build_thread_content(messages: list[ContentUnit]) -> str:
    """One line per message: ``[<timestamp>] <author>: <content>``.

    Messages are sorted by ``occurred_at`` here; storage order is not trusted.
    """
    ordered = sorted(
        messages,
        key=lambda m: (m.occurred_at is None, m.occurred_at or datetime.min, m.source_id),
    )
    lines = []
    for msg in ordered:
        stamp = format_timestamp(msg.occurred_at) if msg.occurred_at else msg.source_id
        author = msg.author_name or msg.author_id or "unknown"
        lines.append(f"[{stamp}] {author}: {msg.content}")
    return "\n".join(lines)
