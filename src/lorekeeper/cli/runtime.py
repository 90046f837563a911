"""Shared wiring for CLI commands: config, logging, store, and providers.

Every helper prints an actionable error and raises ``typer.Exit(1)`` on
failure, so commands can stay linear.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from lorekeeper.cli.errors import err_config, err_no_api_key, err_no_db, err_storage
from lorekeeper.config import ConfigError, LorekeeperConfig, load_config, resolve_db_path
from lorekeeper.db.connection import Database, connect_with_retry
from lorekeeper.db.store import DedupStore
from lorekeeper.errors import StorageError
from lorekeeper.logging_config import configure_logging
from lorekeeper.rag.llm_client import (
    LiteLLMEmbeddingProvider,
    LiteLLMTextProvider,
    validate_api_key,
)

console = Console()


def load_cli_config(db: Path | None = None) -> tuple[LorekeeperConfig, Path]:
    """Load merged config, install log handlers, and resolve the store path.

    ``--db`` (when given) wins over ``database.path`` and ``LOREKEEPER_DB``.
    """
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    configure_logging(cfg.logging.level, cfg.logging.format)
    db_path = db if db is not None else resolve_db_path(cfg)
    return cfg, db_path


def open_store(
    cfg: LorekeeperConfig,
    db_path: Path,
    *,
    must_exist: bool = True,
) -> tuple[sqlite3.Connection, DedupStore]:
    """Open the store with startup retry; the caller closes the connection."""
    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    try:
        conn = connect_with_retry(
            Database(db_path, timeout=cfg.database.timeout),
            attempts=cfg.startup.attempts,
            initial_delay=cfg.startup.initial_delay,
            max_delay=cfg.startup.max_delay,
        )
    except StorageError as exc:
        console.print(err_storage(str(db_path), str(exc.cause or exc)))
        raise typer.Exit(1)
    return conn, DedupStore(conn, dimensions=cfg.embedding.dimensions)


def make_embedder(cfg: LorekeeperConfig) -> LiteLLMEmbeddingProvider:
    _require_api_key(cfg.embedding.model)
    return LiteLLMEmbeddingProvider(
        model=cfg.embedding.model,
        dimensions=cfg.embedding.dimensions,
        timeout=cfg.embedding.timeout,
        num_retries=cfg.embedding.num_retries,
    )


def make_generator(cfg: LorekeeperConfig) -> LiteLLMTextProvider:
    _require_api_key(cfg.generation.model)
    return LiteLLMTextProvider(
        model=cfg.generation.model,
        max_tokens=cfg.generation.max_tokens,
        temperature=cfg.generation.temperature,
        timeout=cfg.generation.timeout,
        num_retries=cfg.generation.num_retries,
    )


def _require_api_key(model: str) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError:
        provider = model.split("/")[0] if "/" in model else "openai"
        console.print(err_no_api_key(provider))
        raise typer.Exit(1)
