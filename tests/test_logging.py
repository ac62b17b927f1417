import json
import logging
import sys

from services.logging import JsonFormatter


def _record(**extra):
    record = logging.LogRecord("workflows.digest", logging.WARNING, __file__, 1, "Digest failed", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_extra_context_is_emitted():
    payload = json.loads(JsonFormatter().format(_record(event_id="evt-1", status_code=429)))
    assert payload["message"] == "Digest failed"
    assert payload["level"] == "WARNING"
    assert payload["event_id"] == "evt-1"
    assert payload["status_code"] == 429
    assert "args" not in payload


def test_exception_is_included():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]
