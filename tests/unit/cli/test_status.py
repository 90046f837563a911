"""Tests for lorekeeper status."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from lorekeeper.cli.main import app
from lorekeeper.db.connection import Database
from lorekeeper.db.models import ContentUnit, SourceKind
from lorekeeper.db.schema import initialize
from lorekeeper.db.store import DedupStore

runner = CliRunner()


def _seed(db_path: Path) -> None:
    with Database(db_path) as conn:
        initialize(conn)
        store = DedupStore(conn, dimensions=3)
        ready, _ = store.upsert(
            ContentUnit(source=SourceKind.WIKI, source_id="1", scope_id="post",
                        content="We deploy from the release branch.")
        )
        store.attach_embedding(ready.id, [1.0, 0.0, 0.0])
        store.upsert(
            ContentUnit(source=SourceKind.WIKI, source_id="2", scope_id="post",
                        content="On-call hand-off happens on Mondays.")
        )
        store.upsert(
            ContentUnit(source=SourceKind.CONVERSATION, source_id="1000.0", scope_id="C1",
                        thread_id="1000.0", content="How do we rotate the staging keys?")
        )


def test_status_without_database(cli_project: Path) -> None:
    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0
    assert "No database found" in result.output
    assert "lorekeeper init" in result.output


def test_status_shows_project_settings(cli_project: Path) -> None:
    _seed(cli_project / ".lorekeeper.db")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "openai/text-embedding-3-small (3 dims)" in result.output
    assert "openai/gpt-4o-mini" in result.output


def test_status_shows_counts_and_backlog(cli_project: Path) -> None:
    _seed(cli_project / ".lorekeeper.db")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "Wiki units" in result.output
    assert "Threads" in result.output
    assert "Schema: v1" in result.output
    assert "2 item(s) waiting for embeddings" in result.output


def test_status_everything_embedded(cli_project: Path) -> None:
    db_path = cli_project / ".lorekeeper.db"
    with Database(db_path) as conn:
        initialize(conn)

    result = runner.invoke(app, ["status", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Everything is embedded" in result.output


def test_status_thread_pending(cli_project: Path) -> None:
    _seed(cli_project / ".lorekeeper.db")

    result = runner.invoke(app, ["status", "--thread", "conversation:C1:1000.0"])

    assert result.exit_code == 0, result.output
    assert "pending" in result.output
    assert "1 message(s), 0 chunk(s)" in result.output


def test_status_thread_with_chunks(cli_project: Path) -> None:
    db_path = cli_project / ".lorekeeper.db"
    _seed(db_path)
    with Database(db_path) as conn:
        store = DedupStore(conn, dimensions=3)
        [group] = store.fetch_pending_groups(10)
        store.attach_chunk_embedding(group.group_id, 0, "ab" * 32, [0.0, 1.0, 0.0],
                                     revision=group.revision)
        store.complete_group(group.group_id, group.revision, 1, "cd" * 32)

    result = runner.invoke(app, ["status", "--thread", "conversation:C1:1000.0"])

    assert result.exit_code == 0, result.output
    assert "ready" in result.output
    assert "1 message(s), 1 chunk(s)" in result.output
    assert "abababababab" in result.output


def test_status_unknown_thread(cli_project: Path) -> None:
    _seed(cli_project / ".lorekeeper.db")

    result = runner.invoke(app, ["status", "--thread", "conversation:C9:1.0"])

    assert result.exit_code == 1
    assert "No thread" in result.output
