"""Embedding backlog processor.

Ingestion never calls the embedding provider. Units and threads are stored
as ``pending`` and this processor converges them in small batches:

  - standalone units (wiki posts and comments) get one vector each;
  - conversation threads are rendered to a transcript, split into word
    windows, and get one vector per chunk.

Every write is conditional on what was read (content hash or thread
revision), so overlapping ticks, or a tick racing an edit, never leave a
stale vector behind. A failed item stays ``pending`` and is retried on a
later tick.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from lorekeeper.db.models import ContentUnit, PendingGroup
from lorekeeper.db.store import DedupStore
from lorekeeper.errors import LorekeeperError, StorageError
from lorekeeper.ingest.chunker import DEFAULT_MAX_WORDS, WordChunker
from lorekeeper.ingest.normalizer import hash_content
from lorekeeper.ingest.quality import QualityGate
from lorekeeper.ingest.threads import build_thread_content
from lorekeeper.rag.llm_client import EmbeddingProvider

_log = logging.getLogger(__name__)

MIN_BATCH_SIZE, MAX_BATCH_SIZE = 1, 1000
MIN_INTERVAL, MAX_INTERVAL = 10.0, 600.0


class ProcessorState(str, Enum):
    IDLE = "idle"
    TICKING = "ticking"
    PROCESSING_BATCH = "processing_batch"


@dataclass
class BatchReport:
    """Outcome counts for one tick."""

    embedded: int = 0
    skipped: int = 0
    failed: int = 0
    stale: int = 0
    groups_embedded: int = 0
    groups_skipped: int = 0
    groups_failed: int = 0
    chunks_embedded: int = 0
    cancelled: bool = False

    @property
    def attempted(self) -> int:
        return (
            self.embedded + self.skipped + self.failed + self.stale
            + self.groups_embedded + self.groups_skipped + self.groups_failed
        )

    def add(self, other: BatchReport) -> None:
        for name in (
            "embedded", "skipped", "failed", "stale", "groups_embedded",
            "groups_skipped", "groups_failed", "chunks_embedded",
        ):
            setattr(self, name, getattr(self, name) + getattr(other, name))


class BacklogProcessor:
    """Periodically attach embeddings to pending units and threads.

    Args:
        store: Deduplication store (its connection must be usable from the
            worker thread when :meth:`start` is used).
        embedder: Embedding provider; the same one the query path uses.
        batch_size: Maximum units and maximum threads fetched per tick.
        interval: Seconds between ticks in :meth:`run`.
        max_words: Chunk window size for thread transcripts.
        gate: Quality gate; defaults to :meth:`QualityGate.for_embedding`.
        logger: Logger to report progress on.
    """

    def __init__(
        self,
        store: DedupStore,
        embedder: EmbeddingProvider,
        *,
        batch_size: int = 10,
        interval: float = 60.0,
        max_words: int = DEFAULT_MAX_WORDS,
        gate: QualityGate | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunker = WordChunker(max_words)
        self._gate = gate or QualityGate.for_embedding()
        self._log = logger or _log
        self.batch_size = batch_size
        self.interval = interval
        self.state = ProcessorState.IDLE
        self.totals = BatchReport()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # One batch
    # ------------------------------------------------------------------

    def tick(self, stop: threading.Event | None = None) -> BatchReport:
        """Process one batch and return what happened.

        Storage failures while fetching end the tick early; failures on a
        single item are logged and the batch moves on. When *stop* is set
        the current item finishes and the rest of the batch is left pending.
        """
        report = BatchReport()
        self.state = ProcessorState.TICKING
        try:
            try:
                units = self._store.fetch_missing_embeddings(self.batch_size)
                groups = self._store.fetch_pending_groups(self.batch_size)
            except StorageError as exc:
                self._log.error("Could not fetch embedding backlog: %s", exc)
                return report

            if not units and not groups:
                self._log.debug("Embedding backlog is empty")
                return report

            self.state = ProcessorState.PROCESSING_BATCH
            self._log.info(
                "Processing embedding batch: %d unit(s), %d thread(s)",
                len(units), len(groups),
            )
            for unit in units:
                if stop is not None and stop.is_set():
                    report.cancelled = True
                    break
                self._process_unit(unit, report)
            for group in groups:
                if report.cancelled or (stop is not None and stop.is_set()):
                    report.cancelled = True
                    break
                self._process_group(group, report)

            self._log.info(
                "Completed embedding batch: %d embedded, %d skipped, %d failed, "
                "%d thread(s) embedded (%d chunk(s))",
                report.embedded, report.skipped, report.failed,
                report.groups_embedded, report.chunks_embedded,
            )
            return report
        finally:
            self.totals.add(report)
            self.state = ProcessorState.IDLE

    def _process_unit(self, unit: ContentUnit, report: BatchReport) -> None:
        verdict = self._gate.check(unit.content)
        try:
            if not verdict:
                self._log.debug("Skipping unit %s: %s", unit.id, verdict.reason)
                if self._store.mark_skipped(unit.id, content_hash=unit.content_hash):
                    report.skipped += 1
                else:
                    report.stale += 1
                return

            vector = self._embedder.generate_embedding(_embedding_text(unit))
            if self._store.attach_embedding(unit.id, vector, content_hash=unit.content_hash):
                report.embedded += 1
            else:
                self._log.debug("Unit %s changed while embedding; left pending", unit.id)
                report.stale += 1
        except LorekeeperError as exc:
            self._log.error("Error embedding unit %s: %s", unit.id, exc)
            report.failed += 1

    def _process_group(self, group: PendingGroup, report: BatchReport) -> None:
        try:
            members = self._store.get_group_units(group.group_id)
            verdict = self._gate.check(" ".join(m.content for m in members))
            if not verdict:
                self._log.debug("Skipping thread %s: %s", group.group_id, verdict.reason)
                if self._store.skip_group(group.group_id, group.revision):
                    report.groups_skipped += 1
                else:
                    report.stale += 1
                return

            text = build_thread_content(members)
            chunks = self._chunker.chunk(group.group_id, text)
            vectors = self._embedder.generate_embeddings([c.text for c in chunks])
            for chunk, vector in zip(chunks, vectors):
                written = self._store.attach_chunk_embedding(
                    group.group_id, chunk.chunk_index, chunk.content_hash, vector,
                    revision=group.revision,
                )
                if not written:
                    break

            if self._store.complete_group(
                group.group_id, group.revision, len(chunks), hash_content(text)
            ):
                report.groups_embedded += 1
                report.chunks_embedded += len(chunks)
            else:
                self._log.debug("Thread %s changed while embedding; left pending", group.group_id)
                report.stale += 1
        except LorekeeperError as exc:
            self._log.error("Error embedding thread %s: %s", group.group_id, exc)
            report.groups_failed += 1

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def run(self, stop: threading.Event) -> None:
        """Tick every ``interval`` seconds until *stop* is set."""
        self._log.info(
            "Starting embedding processor (batch_size=%d, interval=%.0fs)",
            self.batch_size, self.interval,
        )
        while not stop.wait(self.interval):
            self.tick(stop)
        self._log.info("Embedding processor stopped")

    def start(self) -> None:
        """Run the loop on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run, args=(self._stop,), name="lorekeeper-backlog", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop and wait for the current item to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    # ------------------------------------------------------------------
    # Introspection / tuning
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        return {
            "remaining": self._store.count_missing(),
            "batch_size": self.batch_size,
            "interval": self.interval,
            "state": self.state.value,
            "embedded": self.totals.embedded,
            "skipped": self.totals.skipped,
            "failed": self.totals.failed,
            "groups_embedded": self.totals.groups_embedded,
            "chunks_embedded": self.totals.chunks_embedded,
        }

    def set_batch_size(self, size: int) -> bool:
        if not MIN_BATCH_SIZE <= size <= MAX_BATCH_SIZE:
            self._log.warning("Ignoring batch size %d (allowed %d-%d)", size, MIN_BATCH_SIZE, MAX_BATCH_SIZE)
            return False
        self.batch_size = size
        self._log.info("Updated embedding processor batch size: %d", size)
        return True

    def set_interval(self, seconds: float) -> bool:
        if not MIN_INTERVAL <= seconds <= MAX_INTERVAL:
            self._log.warning(
                "Ignoring interval %.1fs (allowed %.0f-%.0fs)", seconds, MIN_INTERVAL, MAX_INTERVAL
            )
            return False
        self.interval = seconds
        self._log.info("Updated embedding processor interval: %.0fs", seconds)
        return True


def _embedding_text(unit: ContentUnit) -> str:
    if unit.title and unit.title not in unit.content:
        return f"{unit.title}\n\n{unit.content}"
    return unit.content
