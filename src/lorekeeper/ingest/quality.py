"""Quality gate: heuristics that keep low-information content away from
embedding and from answer grounding.

A rejection is a verdict, not an error. The backlog records it as a
``skipped`` status; retrieval simply drops the unit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# Placeholder / test phrases never worth an embedding.
LOW_VALUE_PATTERNS: tuple[str, ...] = (
    "hello world",
    "lorem ipsum",
    "dummy text",
    "test message",
    "placeholder",
    "sample",
    "example",
)

# Extra phrases excluded from answer grounding.
RETRIEVAL_PATTERNS: tuple[str, ...] = (
    "test",
    "testing",
    "some other content",
    "this is my other message",
    "should also go in",
)

# Bot acknowledgements, matched at the start of a message.
ACKNOWLEDGEMENT_PREFIXES: tuple[str, ...] = (
    "got it",
    "i've processed",
    "stored the messages",
    "processed and stored",
    "done",
    ":+1:",
    "👍",
    "✅",
)


@dataclass(frozen=True)
class QualityVerdict:
    accepted: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.accepted


_ACCEPTED = QualityVerdict(True)


class QualityGate:
    """Accept or reject content by length, word count, and phrase lists.

    Args:
        min_chars: Minimum length of the stripped content; exactly
            ``min_chars`` characters is accepted.
        min_words: Minimum number of whitespace-separated words.
        patterns: Phrases rejected anywhere in the content (whole words,
            case-insensitive).
        prefixes: Phrases rejected when the content starts with them.
    """

    def __init__(
        self,
        min_chars: int = 10,
        min_words: int = 4,
        patterns: tuple[str, ...] = LOW_VALUE_PATTERNS,
        prefixes: tuple[str, ...] = (),
    ) -> None:
        self.min_chars = min_chars
        self.min_words = min_words
        self.patterns = tuple(p.lower() for p in patterns)
        self.prefixes = tuple(p.lower() for p in prefixes)
        self._pattern_re = (
            re.compile(
                "|".join(rf"(?<!\w){re.escape(p)}(?!\w)" for p in self.patterns)
            )
            if self.patterns
            else None
        )

    @classmethod
    def for_embedding(cls, min_chars: int = 10, min_words: int = 4) -> QualityGate:
        """Gate applied by the backlog before paying for an embedding."""
        return cls(min_chars=min_chars, min_words=min_words, patterns=LOW_VALUE_PATTERNS)

    @classmethod
    def for_retrieval(cls, min_chars: int = 20, min_words: int = 4) -> QualityGate:
        """Stricter gate applied to search hits before they reach the model."""
        return cls(
            min_chars=min_chars,
            min_words=min_words,
            patterns=LOW_VALUE_PATTERNS + RETRIEVAL_PATTERNS,
            prefixes=ACKNOWLEDGEMENT_PREFIXES,
        )

    def check(self, content: str) -> QualityVerdict:
        text = content.strip()
        if not text:
            return QualityVerdict(False, "empty")
        if len(text) < self.min_chars:
            return QualityVerdict(False, f"shorter than {self.min_chars} characters")
        if len(text.split()) < self.min_words:
            return QualityVerdict(False, f"fewer than {self.min_words} words")

        lowered = text.lower()
        for prefix in self.prefixes:
            if lowered.startswith(prefix):
                return QualityVerdict(False, f"acknowledgement: {prefix!r}")
        if self._pattern_re is not None:
            match = self._pattern_re.search(lowered)
            if match:
                return QualityVerdict(False, f"low-value phrase: {match.group(0)!r}")
        return _ACCEPTED

    def accepts(self, content: str) -> bool:
        return self.check(content).accepted
