"""Query entry point: retrieval followed by answer synthesis."""

from __future__ import annotations

import logging

from lorekeeper.db.models import QueryResult
from lorekeeper.errors import ValidationError
from lorekeeper.rag.assembler import NO_RESULTS_ANSWER, AnswerSynthesizer
from lorekeeper.rag.retriever import SimilaritySearch

_log = logging.getLogger(__name__)


class KnowledgeService:
    """Answer natural-language questions from the stored knowledge.

    Any failure aborts the query: no partial answer is returned.
    """

    def __init__(
        self,
        search: SimilaritySearch,
        synthesizer: AnswerSynthesizer,
        logger: logging.Logger | None = None,
    ) -> None:
        self._search = search
        self._synthesizer = synthesizer
        self._log = logger or _log

    def query(self, text: str, k: int | None = None) -> QueryResult:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Query text cannot be empty.")

        self._log.info("Query started: %r", text[:100])
        sources = self._search.query(text, k)
        if not sources:
            self._log.warning("No relevant content found for query: %r", text[:100])
            return QueryResult(answer=NO_RESULTS_ANSWER, query=text, sources=[])

        answer = self._synthesizer.synthesize(text, sources)
        return QueryResult(answer=answer, query=text, sources=sources)
