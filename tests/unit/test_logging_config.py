"""Tests for log handler setup and the JSON formatter."""

from __future__ import annotations

import json
import logging
import sys

import pytest
from rich.console import Console
from rich.logging import RichHandler

from lorekeeper.logging_config import JsonFormatter, configure_logging


@pytest.fixture(autouse=True)
def restore_lorekeeper_logger():
    logger = logging.getLogger("lorekeeper")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def test_text_format_installs_rich_handler():
    logger = configure_logging("debug", "text", console=Console())
    assert logger.name == "lorekeeper"
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    assert [type(h) for h in logger.handlers] == [RichHandler]


def test_json_format_installs_json_formatter():
    logger = configure_logging("INFO", "json")
    [handler] = logger.handlers
    assert isinstance(handler.formatter, JsonFormatter)


def test_reconfigure_replaces_handler():
    configure_logging("INFO", "json")
    logger = configure_logging("INFO", "json")
    assert len(logger.handlers) == 1


def test_warn_is_an_alias_for_warning():
    assert configure_logging("WARN", "json").level == logging.WARNING


def test_child_loggers_inherit_level():
    configure_logging("ERROR", "json")
    assert not logging.getLogger("lorekeeper.ingest.backlog").isEnabledFor(logging.INFO)


def test_json_formatter_payload():
    record = logging.makeLogRecord(
        {
            "name": "lorekeeper.ingest.backlog",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": "Processed %d unit(s)",
            "args": (3,),
            "batch_size": 10,
        }
    )

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "lorekeeper.ingest.backlog"
    assert payload["msg"] == "Processed 3 unit(s)"
    assert payload["batch_size"] == 10
    assert payload["time"].endswith("+00:00")
    assert "error" not in payload


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("provider down")
    except RuntimeError:
        record = logging.makeLogRecord(
            {"msg": "failed", "levelname": "ERROR", "exc_info": sys.exc_info()}
        )

    payload = json.loads(JsonFormatter().format(record))

    assert "RuntimeError: provider down" in payload["error"]
