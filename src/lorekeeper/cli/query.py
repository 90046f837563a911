"""lorekeeper query: answer a question from the knowledge base."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lorekeeper.cli.errors import err_empty_query, err_provider, err_storage
from lorekeeper.cli.runtime import load_cli_config, make_embedder, make_generator, open_store
from lorekeeper.db.models import QueryResult
from lorekeeper.errors import ProviderError, StorageError
from lorekeeper.ingest.quality import QualityGate
from lorekeeper.rag.assembler import AnswerSynthesizer, AssemblerConfig
from lorekeeper.rag.retriever import RetrieverConfig, SimilaritySearch
from lorekeeper.rag.service import KnowledgeService

console = Console()

_PREVIEW_CHARS = 80


def query_cmd(
    text: Annotated[
        str,
        typer.Argument(help="Question to answer."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lorekeeper.db."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", min=1, help="Maximum candidates to consider."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON."),
    ] = False,
) -> None:
    """Ask a question; the answer cites the numbered sources it used."""
    if not text.strip():
        console.print(err_empty_query())
        raise typer.Exit(1)

    cfg, db_path = load_cli_config(db)
    embedder = make_embedder(cfg)
    generator = make_generator(cfg)
    conn, store = open_store(cfg, db_path)

    service = KnowledgeService(
        SimilaritySearch(
            store,
            embedder,
            RetrieverConfig(
                top_k=cfg.retrieval.top_k,
                primary_threshold=cfg.retrieval.primary_threshold,
                relaxed_threshold=cfg.retrieval.relaxed_threshold,
            ),
            gate=QualityGate.for_retrieval(cfg.quality.retrieval_min_chars, cfg.quality.min_words),
        ),
        AnswerSynthesizer(
            generator,
            AssemblerConfig(model=cfg.generation.model, token_budget=cfg.generation.token_budget),
        ),
    )

    try:
        with console.status("Searching knowledge base…"):
            result = service.query(text, top_k)
    except ProviderError as exc:
        console.print(err_provider(cfg.embedding.model + " / " + cfg.generation.model, str(exc)))
        raise typer.Exit(1)
    except StorageError as exc:
        console.print(err_storage(str(db_path), str(exc)))
        raise typer.Exit(1)
    finally:
        conn.close()

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        _show_result(result)


def _show_result(result: QueryResult) -> None:
    console.print(Panel(result.answer, title="[bold]Answer[/]", expand=False))
    if not result.sources:
        return

    table = Table(title="Sources", show_lines=False)
    table.add_column("Similarity", justify="right", style="cyan")
    table.add_column("Source", style="dim")
    table.add_column("Author")
    table.add_column("When", style="dim")
    table.add_column("Content")
    for scored in result.sources:
        unit = scored.unit
        preview = unit.content.replace("\n", " ")
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[:_PREVIEW_CHARS] + "…"
        table.add_row(
            f"{scored.similarity:.3f}",
            unit.title or unit.source.value,
            unit.author_name or unit.author_id,
            unit.occurred_at.strftime("%Y-%m-%d %H:%M") if unit.occurred_at else "",
            preview,
        )
    console.print(table)
