"""lorekeeper CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from lorekeeper.cli.embed import embed_cmd
from lorekeeper.cli.ingest import ingest_cmd
from lorekeeper.cli.init import init_cmd
from lorekeeper.cli.query import query_cmd
from lorekeeper.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("lorekeeper")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lorekeeper {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="lorekeeper",
    help=(
        "lorekeeper answers questions from chat threads and wiki pages.\n\n"
        "  lorekeeper ingest  Store messages, posts, and comments (deduplicated).\n"
        "  lorekeeper embed   Embed the pending backlog.\n"
        "  lorekeeper query   Ask a question."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """lorekeeper: RAG over organizational knowledge."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("embed")(embed_cmd)
app.command("query")(query_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed lorekeeper version."""
    typer.echo(f"lorekeeper {_installed_version()}")


if __name__ == "__main__":
    app()
