"""Tests for lorekeeper embed."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import FakeEmbedder
from lorekeeper.cli.main import app
from lorekeeper.db.connection import Database
from lorekeeper.db.models import EmbeddingStatus
from lorekeeper.db.store import DedupStore
from lorekeeper.ingest.backlog import BacklogProcessor

runner = CliRunner()

RECORDS = [
    {"kind": "post", "id": 1, "title": "Deploys", "content": "We deploy from the release branch."},
    {"kind": "post", "id": 2, "title": "Scratch", "content": "lorem ipsum"},
    {"kind": "message", "channel": "C1", "ts": "1000.0", "text": "How do we rotate the staging keys?"},
]


@pytest.fixture
def fake_embedder(monkeypatch) -> FakeEmbedder:
    embedder = FakeEmbedder()
    monkeypatch.setattr("lorekeeper.cli.embed.make_embedder", lambda cfg: embedder)
    return embedder


@pytest.fixture
def ingested(cli_project: Path) -> Path:
    export = cli_project / "export.json"
    export.write_text(json.dumps(RECORDS), encoding="utf-8")
    result = runner.invoke(app, ["ingest", str(export)])
    assert result.exit_code == 0, result.output
    return cli_project / ".lorekeeper.db"


def test_embed_once_processes_backlog(ingested: Path, fake_embedder: FakeEmbedder) -> None:
    result = runner.invoke(app, ["embed"])

    assert result.exit_code == 0, result.output
    assert "Units embedded" in result.output
    assert "Backlog is empty" in result.output
    with Database(ingested) as conn:
        store = DedupStore(conn, dimensions=3)
        assert store.get_unit("wiki:post:1").embedding_status is EmbeddingStatus.READY
        assert store.get_unit("wiki:post:2").embedding_status is EmbeddingStatus.SKIPPED
        assert store.get_group_status("conversation:C1:1000.0") is EmbeddingStatus.READY


def test_embed_batch_size_limits_work(ingested: Path, fake_embedder: FakeEmbedder) -> None:
    result = runner.invoke(app, ["embed", "--batch-size", "1"])

    assert result.exit_code == 0, result.output
    # One unit and one thread per batch; the second post stays pending.
    assert "1 item(s) still pending" in result.output


def test_embed_batch_size_out_of_range_warns(ingested: Path, fake_embedder: FakeEmbedder) -> None:
    result = runner.invoke(app, ["embed", "--batch-size", "5000"])
    assert result.exit_code == 0
    assert "out of range" in result.output


def test_embed_watch_stops_on_interrupt(
    ingested: Path, fake_embedder: FakeEmbedder, monkeypatch
) -> None:
    def _interrupt(self, stop):
        raise KeyboardInterrupt

    monkeypatch.setattr(BacklogProcessor, "run", _interrupt)

    result = runner.invoke(app, ["embed", "--watch", "--interval", "10"])

    assert result.exit_code == 0, result.output
    assert "Watching backlog" in result.output
    assert "Stopped" in result.output
    assert "Backlog is empty" in result.output


def test_embed_without_database(cli_project: Path, fake_embedder: FakeEmbedder) -> None:
    result = runner.invoke(app, ["embed"])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_embed_without_api_key(ingested: Path, monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = runner.invoke(app, ["embed"])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output
