"""lorekeeper init: create a knowledge base in a project directory.

Creates:
  .lorekeeper.db               empty store with schema
  lorekeeper.yaml              project config with every section at its default
  ~/.lorekeeper/config.yaml    global model config (created once, mode 0o600)
and adds .lorekeeper.db to an existing .gitignore.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lorekeeper.config import DEFAULT_DB_NAME, ensure_global_config
from lorekeeper.db.connection import Database
from lorekeeper.db.schema import initialize

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")
_PROJECT_CONFIG = "lorekeeper.yaml"

_PROJECT_YAML = """\
# lorekeeper project configuration. API keys belong in environment variables.

database:
  path: .lorekeeper.db
  timeout: 10

embedding:
  model: openai/text-embedding-3-small
  dimensions: 1536
  timeout: 10

generation:
  model: openai/gpt-4o-mini
  max_tokens: 1000
  temperature: 0.7
  timeout: 30
  token_budget: 8192

retrieval:
  top_k: 10
  primary_threshold: 0.75
  relaxed_threshold: 0.6

backlog:
  batch_size: 10
  interval: 60
  max_words: 7000

quality:
  min_chars: 10
  min_words: 4
  retrieval_min_chars: 20

logging:
  level: INFO
  format: text
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    global_config: Annotated[
        bool,
        typer.Option("--global-config/--no-global-config", help="Also create ~/.lorekeeper/config.yaml."),
    ] = True,
) -> None:
    """Initialize a lorekeeper knowledge base."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / DEFAULT_DB_NAME
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists.")
        if not typer.confirm("Re-initialize? Existing data is preserved.", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    console.print(f"\n[bold]Creating knowledge base in {project_dir} …[/]\n")

    _create_database(db_path)
    _create_project_yaml(project_dir)
    _update_gitignore(project_dir)

    if global_config:
        cfg_path = ensure_global_config()
        console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ Knowledge base initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. lorekeeper ingest export.jsonl   (load messages, posts, comments)")
    console.print("  2. lorekeeper embed                 (embed the pending backlog)")
    console.print('  3. lorekeeper query "..."           (ask a question)')


def _create_database(db_path: Path) -> None:
    with Database(db_path) as conn:
        initialize(conn)
    console.print(f"  [green]✓[/] {db_path.name}")


def _create_project_yaml(project_dir: Path) -> None:
    target = project_dir / _PROJECT_CONFIG
    if target.exists():
        console.print(f"  [dim]↷ {_PROJECT_CONFIG} exists, left unchanged[/]")
        return
    target.write_text(_PROJECT_YAML, encoding="utf-8")
    console.print(f"  [green]✓[/] {_PROJECT_CONFIG}")


def _update_gitignore(project_dir: Path) -> None:
    """Add lorekeeper entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [DEFAULT_DB_NAME, f"{DEFAULT_DB_NAME}-wal", f"{DEFAULT_DB_NAME}-shm"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8").splitlines()
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# lorekeeper\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with lorekeeper entries)")
