"""lorekeeper status command.

Shows the store location and configuration in use, then embedding progress:
units and threads per status, chunk totals, and the remaining backlog.
With ``--thread`` it shows one thread's status and stored chunks instead.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lorekeeper.cli.errors import err_storage, err_unknown_thread
from lorekeeper.cli.runtime import load_cli_config, open_store
from lorekeeper.config import LorekeeperConfig
from lorekeeper.db.schema import schema_version
from lorekeeper.db.store import DedupStore
from lorekeeper.errors import StorageError

console = Console()

_STATUS_STYLE = {"ready": "green", "pending": "yellow", "skipped": "dim"}


def status_cmd(
    thread: Annotated[
        str | None,
        typer.Option("--thread", help="Show one thread, e.g. conversation:C123:1700000000.0001."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lorekeeper.db."),
    ] = None,
) -> None:
    """Show knowledge base size and embedding progress."""
    cfg, db_path = load_cli_config(db)

    _show_project_panel(db_path, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  lorekeeper init",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    conn, store = open_store(cfg, db_path)
    try:
        if thread is not None:
            _show_thread_panel(store, thread)
        else:
            _show_knowledge_panel(store, schema_version(conn))
    except StorageError as exc:
        console.print(err_storage(str(db_path), str(exc)))
        raise typer.Exit(1)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_project_panel(db: Path, cfg: LorekeeperConfig) -> None:
    db_info = f"{db}"
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db} ({size_mb:.1f} MB)"

    lines = [
        f"Database:    {db_info}",
        f"Embedding:   {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Generation:  {cfg.generation.model}",
        f"Backlog:     {cfg.backlog.batch_size} per batch, every {cfg.backlog.interval:.0f}s",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))


def _show_knowledge_panel(store: DedupStore, version: int) -> None:
    counts = store.count_by_status()

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("", style="bold")
    for status in ("ready", "pending", "skipped"):
        table.add_column(f"[{_STATUS_STYLE[status]}]{status}[/]", justify="right")

    for label, key in (("Wiki units", "units"), ("Threads", "groups")):
        row = counts[key]
        table.add_row(label, *(f"{row.get(s, 0):,}" for s in ("ready", "pending", "skipped")))

    total_units = store.count_units()
    missing = store.count_missing()
    footer = (
        f"Units: [bold]{total_units:,}[/]  |  "
        f"Chunks: [bold]{counts['chunks']['total']:,}[/]  |  "
        f"Schema: v{version}"
    )
    console.print(Panel(table, title="[bold]Knowledge Base[/]", expand=False))
    console.print(footer)
    if missing:
        console.print(f"[yellow]⚠[/] {missing:,} item(s) waiting for embeddings. Run:  lorekeeper embed")
    else:
        console.print("[green]✓[/] Everything is embedded.")


def _show_thread_panel(store: DedupStore, group_id: str) -> None:
    status = store.get_group_status(group_id)
    if status is None:
        console.print(err_unknown_thread(group_id))
        raise typer.Exit(1)

    messages = store.get_group_units(group_id)
    chunks = store.list_group_chunks(group_id)

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Chunk", justify="right")
    table.add_column("Hash")
    table.add_column("Embedded at", style="dim")
    for chunk in chunks:
        table.add_row(str(chunk.chunk_index), chunk.content_hash[:12], chunk.created_at or "")

    style = _STATUS_STYLE[status.value]
    console.print(
        f"Thread [bold]{group_id}[/]: [{style}]{status.value}[/], "
        f"{len(messages):,} message(s), {len(chunks):,} chunk(s)"
    )
    if chunks:
        console.print(table)
