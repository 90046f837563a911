"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest

from lorekeeper.db.connection import Database
from lorekeeper.db.schema import initialize
from lorekeeper.db.store import DedupStore

DIMS = 3


class FakeEmbedder:
    """Deterministic embedding provider: looks texts up in a table.

    Unknown texts get ``default``. Every call is recorded in ``calls``.
    """

    def __init__(self, table: dict[str, list[float]] | None = None, default=None) -> None:
        self.table = dict(table or {})
        self.default = default or [0.0, 0.0, 1.0]
        self.calls: list[list[str]] = []

    def _lookup(self, text: str) -> list[float]:
        for key, vector in self.table.items():
            if key in text:
                return list(vector)
        return list(self.default)

    def generate_embedding(self, text: str) -> list[float]:
        self.calls.append([text])
        return self._lookup(text)

    def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._lookup(t) for t in texts]


class FakeGenerator:
    def __init__(self, answer: str | None = "An answer [1].") -> None:
        self.answer = answer
        self.prompts: list[tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str | None:
        self.prompts.append((system_prompt, user_prompt))
        return self.answer


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".lorekeeper.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_db):
    """DedupStore over tmp_db with 3-dimensional vectors."""
    return DedupStore(tmp_db, dimensions=DIMS)


@pytest.fixture
def embedder():
    """FakeEmbedder; tests fill ``embedder.table`` with substring → vector."""
    return FakeEmbedder()


@pytest.fixture
def generator():
    """FakeGenerator answering "An answer [1]."; set ``generator.answer`` to change."""
    return FakeGenerator()


@pytest.fixture
def quiet_logger():
    logger = logging.getLogger("lorekeeper.tests")
    logger.addHandler(logging.NullHandler())
    return logger


@pytest.fixture
def cli_project(tmp_path, monkeypatch):
    """Project directory for CLI tests (cwd), with 3-dim embeddings configured.

    The global config is redirected into tmp_path, LOREKEEPER_* overrides are
    cleared, and a dummy OPENAI_API_KEY is set.
    """
    for name in (
        "LOREKEEPER_DB",
        "LOREKEEPER_EMBEDDING_MODEL",
        "LOREKEEPER_GENERATION_MODEL",
        "LOREKEEPER_LOG_LEVEL",
        "LOREKEEPER_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr("lorekeeper.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    monkeypatch.chdir(tmp_path)
    (tmp_path / "lorekeeper.yaml").write_text(
        "embedding:\n  dimensions: 3\nlogging:\n  level: ERROR\n", encoding="utf-8"
    )

    root = logging.getLogger("lorekeeper")
    handlers, level, propagate = list(root.handlers), root.level, root.propagate
    yield tmp_path
    root.handlers = handlers
    root.setLevel(level)
    root.propagate = propagate
