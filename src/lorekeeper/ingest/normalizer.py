"""Content normalizer: strips platform references and wiki markup before hashing.

normalize() is pure and idempotent: normalize(normalize(x)) == normalize(x)
for both chat and wiki (markup=True) content.
"""

from __future__ import annotations

import hashlib
import re

from lorekeeper.db.models import SourceKind

# <@U123>, <#C123|general>, <!here>, <!subteam^S1|@team>
_REFERENCE_RE = re.compile(r"<[@#!][^<>]*>")

_BOLD_ITALIC_RE = re.compile(r"\*+")
_CODE_RE = re.compile(r"`+")
_STRIKE_RE = re.compile(r"~~")
# Underscore runs not enclosed by letters/digits on both sides (emphasis, not snake_case).
_UNDERSCORE_RE = re.compile(r"(?<![^\W_])_+|_+(?![^\W_])")
_HEADING_RE = re.compile(r"^[ \t]*(?:#+[ \t]*)+", re.MULTILINE)

_SPACES_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def normalize(raw: str, *, markup: bool = False) -> str:
    """Return *raw* cleaned for hashing and embedding.

    Args:
        raw: Text as delivered by the chat platform or wiki.
        markup: Also strip emphasis and heading markers (wiki content).
    """
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    # Each pass only deletes characters (or turns a tab into a space), so this
    # terminates; removing a token can expose a new one, e.g. "<<@U1>@U2>".
    while True:
        cleaned = _clean_once(text, markup)
        if cleaned == text:
            return cleaned
        text = cleaned


def _clean_once(text: str, markup: bool) -> str:
    text = _REFERENCE_RE.sub("", text)
    if markup:
        text = _strip_markup(text)
    return _collapse_whitespace(text)


def _strip_markup(text: str) -> str:
    text = _BOLD_ITALIC_RE.sub("", text)
    text = _CODE_RE.sub("", text)
    text = _STRIKE_RE.sub("", text)
    text = _UNDERSCORE_RE.sub("", text)
    return _HEADING_RE.sub("", text)


def _collapse_whitespace(text: str) -> str:
    lines = [_SPACES_RE.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def hash_content(text: str) -> str:
    """SHA-256 hex digest of *text* (64 characters, stable across runs)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def make_unit_id(source: SourceKind | str, scope_id: str, source_id: str) -> str:
    """Stable unit id: ``source:scope:nativeId``."""
    kind = source.value if isinstance(source, SourceKind) else source
    return f"{kind}:{scope_id}:{source_id}"


def make_group_id(scope_id: str, thread_id: str) -> str:
    """Key of a conversation thread in the content_groups table."""
    return make_unit_id(SourceKind.CONVERSATION, scope_id, thread_id)
