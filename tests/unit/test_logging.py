"""Unit tests for structured logging."""

from __future__ import annotations

import io
import json
import logging

import pytest

from threadgraph.logging import JsonFormatter, configure_logging


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("threadgraph.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra() -> None:
    payload = json.loads(JsonFormatter().format(_record(thread_id="t1", step=3)))

    assert payload["message"] == "hello x"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "threadgraph.test"
    assert payload["extra"] == {"thread_id": "t1", "step": 3}


def test_json_formatter_renders_unserialisable_values() -> None:
    payload = json.loads(JsonFormatter().format(_record(nodes={"a"})))

    assert payload["extra"]["nodes"] == "{'a'}"


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_configure_logging_replaces_handlers(restore_root_logger: logging.Logger) -> None:
    stream = io.StringIO()

    configure_logging("debug", stream=stream)
    logging.getLogger("threadgraph.test").debug("step done", extra={"checkpoint_id": "c1"})

    assert len(restore_root_logger.handlers) == 1
    line = json.loads(stream.getvalue().splitlines()[-1])
    assert line["message"] == "step done"
    assert line["extra"] == {"checkpoint_id": "c1"}
