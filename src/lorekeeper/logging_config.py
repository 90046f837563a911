"""Log handler setup for the ``lorekeeper`` logger tree.

Components log via ``logging.getLogger(__name__)`` (or an injected logger)
and never configure handlers themselves; only entry points call
:func:`configure_logging`.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from rich.console import Console
from rich.logging import RichHandler

_ROOT = "lorekeeper"

# Attributes every LogRecord has; anything else came in via ``extra=``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, msg, plus ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    console: Console | None = None,
) -> logging.Logger:
    """Install a single handler on the ``lorekeeper`` logger and return it.

    Args:
        level: DEBUG, INFO, WARNING (or WARN), ERROR.
        fmt: ``text`` for rich console output, ``json`` for JSON lines on stderr.
        console: Console for text output (defaults to stderr).
    """
    level = level.upper()
    if level == "WARN":
        level = "WARNING"

    logger = logging.getLogger(_ROOT)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level, logging.INFO))
    logger.propagate = False
    return logger
