"""lorekeeper configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site; not in this module)
  2. Environment variables  (LOREKEEPER_DB, LOREKEEPER_EMBEDDING_MODEL,
     LOREKEEPER_GENERATION_MODEL, LOREKEEPER_LOG_LEVEL, LOREKEEPER_LOG_FORMAT)
  3. Per-project lorekeeper.yaml  (next to .lorekeeper.db)
  4. Global ~/.lorekeeper/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".lorekeeper"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "lorekeeper.yaml"

DEFAULT_DB_NAME: str = ".lorekeeper.db"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like token_budget, max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # bot_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # webhook_secret, signing_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "database", "embedding", "generation", "retrieval", "backlog",
        "quality", "logging", "startup",
    ]
)

LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR"])
LOG_FORMATS: frozenset[str] = frozenset(["text", "json"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """SQLite store location (lorekeeper.yaml: database:)."""

    path: str = DEFAULT_DB_NAME
    timeout: float = 10.0


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (lorekeeper.yaml: embedding:).

    The same model embeds content in the backlog and queries at search time.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    timeout: float = 10.0
    num_retries: int = 0


@dataclass
class GenerationCfg:
    """LLM generation configuration (lorekeeper.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 1_000
    temperature: float = 0.7
    timeout: float = 30.0
    num_retries: int = 0
    token_budget: int = 8_192


@dataclass
class RetrievalCfg:
    """Similarity search configuration (lorekeeper.yaml: retrieval:)."""

    top_k: int = 10
    primary_threshold: float = 0.75
    relaxed_threshold: float = 0.6


@dataclass
class BacklogCfg:
    """Embedding backlog processor (lorekeeper.yaml: backlog:)."""

    batch_size: int = 10
    interval: float = 60.0
    max_words: int = 7_000


@dataclass
class QualityCfg:
    """Quality gate thresholds (lorekeeper.yaml: quality:).

    Attributes:
        min_chars: Minimum content length for embedding, and for storing a
            non-root chat message.
        min_words: Minimum word count, for embedding and for retrieval.
        retrieval_min_chars: Minimum content length for a search hit to be used.
    """

    min_chars: int = 10
    min_words: int = 4
    retrieval_min_chars: int = 20


@dataclass
class LoggingCfg:
    """Log output (lorekeeper.yaml: logging:)."""

    level: str = "INFO"    # DEBUG | INFO | WARNING | ERROR
    format: str = "text"   # text | json


@dataclass
class StartupCfg:
    """Bounded retry when opening the store (lorekeeper.yaml: startup:)."""

    attempts: int = 5
    initial_delay: float = 0.5
    max_delay: float = 8.0


@dataclass
class LorekeeperConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    backlog: BacklogCfg = field(default_factory=BacklogCfg)
    quality: QualityCfg = field(default_factory=QualityCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)
    startup: StartupCfg = field(default_factory=StartupCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: LorekeeperConfig) -> None:
    """Raise ConfigError for values no component can work with."""
    level = cfg.logging.level.upper()
    if level == "WARN":
        level = "WARNING"
    if level not in LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {', '.join(sorted(LOG_LEVELS))}, "
            f"got '{cfg.logging.level}'."
        )
    cfg.logging.level = level

    fmt = cfg.logging.format.lower()
    if fmt not in LOG_FORMATS:
        raise ConfigError(f"logging.format must be 'text' or 'json', got '{cfg.logging.format}'.")
    cfg.logging.format = fmt

    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}.")
    if cfg.retrieval.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {cfg.retrieval.top_k}.")
    if cfg.retrieval.relaxed_threshold > cfg.retrieval.primary_threshold:
        raise ConfigError(
            "retrieval.relaxed_threshold must not exceed retrieval.primary_threshold "
            f"({cfg.retrieval.relaxed_threshold} > {cfg.retrieval.primary_threshold})."
        )
    if cfg.backlog.max_words < 1:
        raise ConfigError(f"backlog.max_words must be >= 1, got {cfg.backlog.max_words}.")
    if cfg.startup.attempts < 1:
        raise ConfigError(f"startup.attempts must be >= 1, got {cfg.startup.attempts}.")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> LorekeeperConfig:
    """Build a *LorekeeperConfig* from a merged raw YAML dict."""
    cfg = LorekeeperConfig()

    if "database" in data:
        d = data["database"] or {}
        cfg.database = DatabaseCfg(
            path=str(d.get("path", cfg.database.path)),
            timeout=float(d.get("timeout", cfg.database.timeout)),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            timeout=float(e.get("timeout", cfg.embedding.timeout)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            timeout=float(g.get("timeout", cfg.generation.timeout)),
            num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
            token_budget=int(g.get("token_budget", cfg.generation.token_budget)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            primary_threshold=float(
                r.get("primary_threshold", cfg.retrieval.primary_threshold)
            ),
            relaxed_threshold=float(
                r.get("relaxed_threshold", cfg.retrieval.relaxed_threshold)
            ),
        )

    if "backlog" in data:
        b = data["backlog"] or {}
        cfg.backlog = BacklogCfg(
            batch_size=int(b.get("batch_size", cfg.backlog.batch_size)),
            interval=float(b.get("interval", cfg.backlog.interval)),
            max_words=int(b.get("max_words", cfg.backlog.max_words)),
        )

    if "quality" in data:
        q = data["quality"] or {}
        cfg.quality = QualityCfg(
            min_chars=int(q.get("min_chars", cfg.quality.min_chars)),
            min_words=int(q.get("min_words", cfg.quality.min_words)),
            retrieval_min_chars=int(
                q.get("retrieval_min_chars", cfg.quality.retrieval_min_chars)
            ),
        )

    if "logging" in data:
        lg = data["logging"] or {}
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)),
            format=str(lg.get("format", cfg.logging.format)),
        )

    if "startup" in data:
        s = data["startup"] or {}
        cfg.startup = StartupCfg(
            attempts=int(s.get("attempts", cfg.startup.attempts)),
            initial_delay=float(s.get("initial_delay", cfg.startup.initial_delay)),
            max_delay=float(s.get("max_delay", cfg.startup.max_delay)),
        )

    return cfg


def _apply_env_overrides(cfg: LorekeeperConfig) -> LorekeeperConfig:
    """Apply LOREKEEPER_* environment variable overrides (layer 2)."""
    if path := os.environ.get("LOREKEEPER_DB"):
        cfg.database.path = path
    if model := os.environ.get("LOREKEEPER_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("LOREKEEPER_GENERATION_MODEL"):
        cfg.generation.model = model
    if level := os.environ.get("LOREKEEPER_LOG_LEVEL"):
        cfg.logging.level = level
    if fmt := os.environ.get("LOREKEEPER_LOG_FORMAT"):
        cfg.logging.format = fmt
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LorekeeperConfig:
    """Load and return a merged *LorekeeperConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *lorekeeper.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *LorekeeperConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
            value is out of range (log level, log format, thresholds).
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def resolve_db_path(cfg: LorekeeperConfig, project_dir: Path | None = None) -> Path:
    """Absolute store path: relative ``database.path`` resolves against *project_dir*."""
    path = Path(cfg.database.path).expanduser()
    if not path.is_absolute():
        path = (project_dir if project_dir is not None else Path.cwd()) / path
    return path


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.lorekeeper/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# lorekeeper global configuration: model defaults only.\n"
            "# NEVER store API keys here; use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
