from __future__ import annotations

import json
import logging

from app.core.context import set_session_key
from app.core.logging import JsonFormatter, SessionKeyFilter, TextFormatter


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("app.chat", logging.INFO, __file__, 1, msg, None, None)


def test_filter_attaches_session_key():
    set_session_key("0xabc")
    try:
        record = _record()
        assert SessionKeyFilter().filter(record) is True
        assert record.session_key == "0xabc"
    finally:
        set_session_key(None)

    record = _record()
    SessionKeyFilter().filter(record)
    assert record.session_key == "-"


def test_json_formatter_includes_session():
    record = _record("parked")
    record.session_key = "0xabc"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["msg"] == "parked"
    assert payload["session"] == "0xabc"
    assert payload["level"] == "INFO"


def test_text_formatter_line():
    record = _record("parked")
    record.session_key = "k"
    line = TextFormatter().format(record)
    assert "session=k" in line
    assert line.endswith("app.chat: parked")
