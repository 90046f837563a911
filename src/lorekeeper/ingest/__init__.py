"""lorekeeper ingest pipeline: normalizer, quality gate, chunker, embedding backlog."""

from lorekeeper.ingest.chunker import WordChunker, chunk_words
from lorekeeper.ingest.normalizer import hash_content, normalize
from lorekeeper.ingest.quality import QualityGate

__all__ = [
    "QualityGate",
    "WordChunker",
    "chunk_words",
    "hash_content",
    "normalize",
]
