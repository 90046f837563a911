"""Similarity search over standalone units and conversation threads.

Candidates come from two channels that share one similarity scale
(``1 - cosine_distance``):

  - standalone units (wiki posts and comments), one vector each;
  - conversation threads, scored by their best-matching chunk and then
    expanded into their member messages in timestamp order.

Relevance is two-tiered: hits above the primary threshold are used when
any survive the quality filter; otherwise the relaxed threshold is tried.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from lorekeeper.db.models import ContentUnit, ScoredUnit
from lorekeeper.db.store import DedupStore
from lorekeeper.errors import ValidationError
from lorekeeper.ingest.quality import QualityGate
from lorekeeper.rag.llm_client import EmbeddingProvider

_log = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Configuration for similarity search.

    Attributes:
        top_k: Maximum number of candidates (units or threads) kept after ranking.
        primary_threshold: Similarity a hit must strictly exceed in the first pass.
        relaxed_threshold: Similarity a hit must strictly exceed in the fallback pass.
    """

    top_k: int = 10
    primary_threshold: float = 0.75
    relaxed_threshold: float = 0.6


@dataclass
class _Candidate:
    key: str
    similarity: float
    units: list[ContentUnit] = field(default_factory=list)

    @property
    def latest(self) -> float:
        stamps = [u.occurred_at.timestamp() for u in self.units if u.occurred_at]
        return max(stamps) if stamps else -math.inf


class SimilaritySearch:
    """Embed a query and return relevant, quality-filtered units, best first.

    Args:
        store: Deduplication store to search.
        embedder: Must be the provider used by the backlog processor.
        config: Ranking and threshold settings.
        gate: Quality filter; defaults to :meth:`QualityGate.for_retrieval`.
        logger: Logger for ranking diagnostics.
    """

    def __init__(
        self,
        store: DedupStore,
        embedder: EmbeddingProvider,
        config: RetrieverConfig | None = None,
        gate: QualityGate | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.config = config or RetrieverConfig()
        self._gate = gate or QualityGate.for_retrieval()
        self._log = logger or _log

    def query(self, query_text: str, k: int | None = None) -> list[ScoredUnit]:
        """Return up to *k* candidates' worth of units relevant to *query_text*.

        Raises:
            ValidationError: If the query is empty.
            ProviderError: If the query cannot be embedded.
            StorageError: If the store cannot be searched.
        """
        query_text = (query_text or "").strip()
        if not query_text:
            raise ValidationError("Query text cannot be empty.")
        if k is None:
            k = self.config.top_k
        if k < 1:
            raise ValidationError(f"k must be >= 1, got {k}")

        vector = self._embedder.generate_embedding(query_text)
        candidates = self._rank(vector, k)
        self._log.debug("Vector search returned %d candidate(s)", len(candidates))

        results = self._select(candidates, self.config.primary_threshold)
        if not results:
            self._log.info(
                "No results above %.2f, retrying with %.2f",
                self.config.primary_threshold, self.config.relaxed_threshold,
            )
            results = self._select(candidates, self.config.relaxed_threshold)

        self._log.info(
            "Similarity search: %d candidate(s), %d relevant unit(s)",
            len(candidates), len(results),
        )
        return results

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _rank(self, vector: list[float], k: int) -> list[_Candidate]:
        candidates = [
            _Candidate(key=hit.unit.id, similarity=hit.similarity, units=[hit.unit])
            for hit in self._store.search_nearest(vector, k)
        ]
        for group_id, similarity in self._store.search_nearest_groups(vector, k):
            members = self._store.get_group_units(group_id)
            if members:
                candidates.append(_Candidate(key=group_id, similarity=similarity, units=members))

        candidates.sort(key=lambda c: (-c.similarity, -c.latest, c.key))
        return candidates[:k]

    def _select(self, candidates: list[_Candidate], threshold: float) -> list[ScoredUnit]:
        selected: list[ScoredUnit] = []
        for candidate in candidates:
            if candidate.similarity <= threshold:
                continue
            for unit in candidate.units:
                if self._gate.accepts(unit.content):
                    selected.append(ScoredUnit(unit=unit, similarity=candidate.similarity))
        return selected
