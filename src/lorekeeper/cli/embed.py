"""lorekeeper embed: run the embedding backlog once, or keep it running."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from lorekeeper.cli.errors import err_storage
from lorekeeper.cli.runtime import load_cli_config, make_embedder, open_store
from lorekeeper.errors import StorageError
from lorekeeper.ingest.backlog import BacklogProcessor, BatchReport
from lorekeeper.ingest.quality import QualityGate

console = Console()


def embed_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lorekeeper.db."),
    ] = None,
    watch: Annotated[
        bool,
        typer.Option("--watch", "-w", help="Keep processing every --interval seconds until Ctrl-C."),
    ] = False,
    batch_size: Annotated[
        int | None,
        typer.Option("--batch-size", help="Units and threads per batch (1-1000)."),
    ] = None,
    interval: Annotated[
        float | None,
        typer.Option("--interval", help="Seconds between batches with --watch (10-600)."),
    ] = None,
) -> None:
    """Embed content that is still waiting for vectors."""
    cfg, db_path = load_cli_config(db)
    embedder = make_embedder(cfg)
    conn, store = open_store(cfg, db_path)

    processor = BacklogProcessor(
        store,
        embedder,
        batch_size=cfg.backlog.batch_size,
        interval=cfg.backlog.interval,
        max_words=cfg.backlog.max_words,
        gate=QualityGate.for_embedding(cfg.quality.min_chars, cfg.quality.min_words),
    )
    if batch_size is not None and not processor.set_batch_size(batch_size):
        console.print(f"[yellow]⚠[/] Batch size {batch_size} out of range, using {processor.batch_size}.")
    if interval is not None and not processor.set_interval(interval):
        console.print(f"[yellow]⚠[/] Interval {interval} out of range, using {processor.interval:.0f}s.")

    try:
        if watch:
            _watch(processor)
        else:
            report = processor.tick()
            _show_report(report)
        remaining = store.count_missing()
    except StorageError as exc:
        console.print(err_storage(str(db_path), str(exc)))
        raise typer.Exit(1)
    finally:
        conn.close()

    if remaining:
        console.print(f"[dim]{remaining:,} item(s) still pending.[/]")
    else:
        console.print("[green]✓[/] Backlog is empty.")


def _watch(processor: BacklogProcessor) -> None:
    stop = threading.Event()
    console.print(
        f"[bold]Watching backlog[/] every {processor.interval:.0f}s "
        f"(batch size {processor.batch_size}). Press Ctrl-C to stop."
    )
    try:
        processor.tick(stop)
        processor.run(stop)
    except KeyboardInterrupt:
        stop.set()
        console.print("\n[dim]Stopped.[/]")
    _show_report(processor.totals)


def _show_report(report: BatchReport) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("What", style="bold")
    table.add_column("Count", justify="right")
    table.add_row("Units embedded", str(report.embedded))
    table.add_row("Units skipped (low quality)", str(report.skipped))
    table.add_row("Threads embedded", f"{report.groups_embedded} ({report.chunks_embedded} chunks)")
    table.add_row("Threads skipped (low quality)", str(report.groups_skipped))
    failed = report.failed + report.groups_failed
    table.add_row("Failed (will retry)", f"[red]{failed}[/]" if failed else "0")
    if report.stale:
        table.add_row("Changed while embedding", str(report.stale))
    console.print(table)
