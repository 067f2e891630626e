from __future__ import annotations

import json
import logging

from scalper.core.config import LoggingConfig
from scalper.core.logging import JsonFormatter, KeyValueFormatter, configure_logging


def _record(**extra: object) -> logging.LogRecord:
    rec = logging.LogRecord("scalper.test", logging.INFO, __file__, 1, "position_opened", (), None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_json_formatter_folds_extras() -> None:
    line = json.loads(JsonFormatter().format(_record(instrument="TOK", amount=0.1)))

    assert line["event"] == "position_opened"
    assert line["level"] == "INFO"
    assert line["instrument"] == "TOK"
    assert line["amount"] == 0.1
    assert "args" not in line


def test_key_value_formatter_appends_sorted_extras() -> None:
    out = KeyValueFormatter().format(_record(instrument="TOK", amount=0.1))
    assert out.endswith("position_opened amount=0.1 instrument=TOK")


def test_configure_logging_replaces_root_handlers() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging(LoggingConfig(level="debug", json_output=True))
        configure_logging(LoggingConfig(level="debug", json_output=True))
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert root.level == logging.DEBUG
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
