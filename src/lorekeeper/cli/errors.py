"""lorekeeper rich error messages with actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from lorekeeper.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".lorekeeper.db") -> str:
    """No .lorekeeper.db found."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  lorekeeper init"
    )


def err_storage(db_path: str, detail: str) -> str:
    """The store could not be opened or written."""
    return (
        f"[red]Error:[/] Database operation failed on '{db_path}': {detail}\n"
        "  Check that the file is not locked by another process and the disk is writable."
    )


def err_provider(model: str, detail: str) -> str:
    """An embedding or generation call failed."""
    return (
        f"[red]Error:[/] Model call to '{model}' failed: {detail}\n"
        "  Check your API key, network access, and provider quota, then retry."
    )


def err_config(detail: str) -> str:
    """Config file rejected."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {detail}\n"
        "  Fix lorekeeper.yaml (or ~/.lorekeeper/config.yaml) and retry."
    )


def err_input_file(path: str, detail: str) -> str:
    """Ingest file missing or malformed."""
    return (
        f"[red]Error:[/] Cannot read records from '{path}': {detail}\n"
        "  Expected a JSON array or JSON lines with records of kind "
        "'message', 'post', or 'comment'."
    )


def err_empty_query() -> str:
    return (
        "[red]Error:[/] Query text is empty.\n"
        '  Run:  lorekeeper query "How do we deploy the API?"'
    )


def warn_backlog_pending(count: int) -> str:
    """Shown after ingest or query when items are still waiting for embeddings."""
    return (
        f"[yellow]⚠[/] {count:,} item(s) are waiting for embeddings and are not searchable yet.\n"
        "  Run:  lorekeeper embed"
    )


def err_unknown_thread(group_id: str) -> str:
    return (
        f"[red]Error:[/] No thread '{group_id}' in the knowledge base.\n"
        "  Thread ids look like 'conversation:<channel>:<thread_ts>'."
    )
