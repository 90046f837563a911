"""Word-window chunker for long thread transcripts.

Boundaries are purely word-count based: the same text always produces the
same chunks. No attempt is made to keep sentences or messages together.
"""

from __future__ import annotations

from lorekeeper.db.models import Chunk
from lorekeeper.ingest.normalizer import hash_content

DEFAULT_MAX_WORDS = 7000


def chunk_words(text: str, max_words: int = DEFAULT_MAX_WORDS) -> list[str]:
    """Split *text* into pieces of at most *max_words* whitespace-delimited words.

    Text at or under the limit is returned unchanged as ``[text]``. Longer
    text is re-joined with single spaces inside each piece.
    """
    if max_words < 1:
        raise ValueError("max_words must be >= 1")

    words = text.split()
    if len(words) <= max_words:
        return [text]

    return [
        " ".join(words[i : i + max_words])
        for i in range(0, len(words), max_words)
    ]


class WordChunker:
    """Turn a thread's text into hashed :class:`Chunk` objects."""

    def __init__(self, max_words: int = DEFAULT_MAX_WORDS) -> None:
        if max_words < 1:
            raise ValueError("max_words must be >= 1")
        self.max_words = max_words

    def chunk(self, group_id: str, text: str) -> list[Chunk]:
        return [
            Chunk(group_id=group_id, chunk_index=i, text=t, content_hash=hash_content(t))
            for i, t in enumerate(chunk_words(text, self.max_words))
        ]
