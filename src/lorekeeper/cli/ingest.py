"""lorekeeper ingest: load exported chat and wiki records into .lorekeeper.db.

Input is a JSON array (or an object with a ``records`` array) or JSON lines.
Each record has a ``kind``:

  message  channel, ts, text, [thread_ts, user_id, user_name, bot]
  post     id, title, content, [author {id, name}, created_at]
  comment  id, post_id, content, [author {id, name}, created_at]

A raw wiki webhook payload (``{"event": ..., "data": {...}}``) is accepted
as-is. Nothing is embedded here; run ``lorekeeper embed`` afterwards.
"""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from lorekeeper.cli.errors import err_input_file, err_storage, warn_backlog_pending
from lorekeeper.cli.runtime import load_cli_config, open_store
from lorekeeper.errors import StorageError, ValidationError
from lorekeeper.ingest.pipeline import IngestResult, Ingestor, parse_iso_timestamp

console = Console()


def ingest_cmd(
    file: Annotated[
        Path,
        typer.Argument(help="JSON or JSON-lines export to ingest."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lorekeeper.db (created if missing)."),
    ] = None,
) -> None:
    """Ingest chat messages, wiki posts, and wiki comments."""
    cfg, db_path = load_cli_config(db)

    try:
        records = read_records(file)
    except (OSError, ValueError) as exc:
        console.print(err_input_file(str(file), str(exc)))
        raise typer.Exit(1)

    if not records:
        console.print("[yellow]No records found to ingest.[/]")
        raise typer.Exit(0)

    conn, store = open_store(cfg, db_path, must_exist=False)
    ingestor = Ingestor(store, min_chars=cfg.quality.min_chars)
    counts: Counter[str] = Counter()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Ingesting…", total=len(records))
            for line_no, record in enumerate(records, start=1):
                try:
                    result = ingest_record(ingestor, record)
                except ValidationError as exc:
                    console.print(f"  [red]✗ Record {line_no}:[/] {exc}")
                    counts["invalid"] += 1
                else:
                    counts[result.status] += 1
                prog.update(task, advance=1)

        console.print(
            f"[green]✓[/] {counts['inserted']} new · {counts['updated']} updated · "
            f"{counts['skipped']} skipped"
            + (f" · [red]{counts['invalid']} invalid[/]" if counts["invalid"] else "")
        )
        pending = store.count_missing()
        if pending:
            console.print(warn_backlog_pending(pending))
    except StorageError as exc:
        console.print(err_storage(str(db_path), str(exc)))
        raise typer.Exit(1)
    finally:
        conn.close()

    if counts["invalid"]:
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Record parsing / dispatch
# ------------------------------------------------------------------


def read_records(path: Path) -> list[dict[str, Any]]:
    """Parse *path* as a JSON document or, failing that, as JSON lines."""
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = [
            _parse_line(line, n)
            for n, line in enumerate(text.splitlines(), start=1)
            if line.strip()
        ]

    if isinstance(data, dict):
        data = data.get("records", [data])
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise ValueError("expected a list of JSON objects")
    return data


def _parse_line(line: str, line_no: int) -> dict[str, Any]:
    try:
        return json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"line {line_no}: {exc.msg}") from exc


def ingest_record(ingestor: Ingestor, record: dict[str, Any]) -> IngestResult:
    """Route one record to the matching Ingestor entry point."""
    if "event" in record:
        return ingestor.ingest_wiki_event(str(record["event"]), record.get("data") or {})

    kind = record.get("kind")
    author = record.get("author") or {}
    author_id = str(record.get("author_id") or author.get("id") or "")
    author_name = str(record.get("author_name") or author.get("name") or "")

    if kind == "message":
        return ingestor.ingest_message(
            str(record.get("channel", "")),
            str(record.get("ts", "")),
            record.get("text") or "",
            thread_ts=str(record["thread_ts"]) if record.get("thread_ts") else None,
            user_id=str(record.get("user_id") or record.get("user") or ""),
            user_name=str(record.get("user_name") or ""),
            bot=bool(record.get("bot") or record.get("bot_id")),
        )
    if kind == "post":
        return ingestor.ingest_wiki_post(
            str(record.get("id", "")),
            record.get("title") or "",
            record.get("content") or "",
            author_id=author_id,
            author_name=author_name,
            occurred_at=parse_iso_timestamp(record.get("created_at")),
        )
    if kind == "comment":
        return ingestor.ingest_wiki_comment(
            str(record.get("id", "")),
            str(record.get("post_id") or ""),
            record.get("content") or "",
            author_id=author_id,
            author_name=author_name,
            occurred_at=parse_iso_timestamp(record.get("created_at")),
        )
    raise ValidationError(f"unknown record kind {kind!r}")
