"""
Unit Tests for structured logging
"""

import json
import logging
import sys

import pytest

from src.core.logging_config import (
    JSONFormatter,
    StandardFormatter,
    clear_request_id,
    get_request_id,
    set_request_id,
    setup_logging,
)


def make_record(msg="Session created", **extra):
    record = logging.LogRecord("src.core.sessions", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def reset_request_id():
    clear_request_id()
    yield
    clear_request_id()


@pytest.mark.unit
def test_json_formatter_fields():
    data = json.loads(JSONFormatter().format(make_record()))

    assert data["level"] == "INFO"
    assert data["logger"] == "src.core.sessions"
    assert data["message"] == "Session created"
    assert data["timestamp"].endswith("Z")
    assert "request_id" not in data
    assert "context" not in data


@pytest.mark.unit
def test_json_formatter_includes_request_id_and_extra():
    set_request_id("req-123")

    data = json.loads(JSONFormatter().format(make_record(destroyed=3, failed=0)))

    assert data["request_id"] == "req-123"
    assert data["context"] == {"destroyed": 3, "failed": 0}


@pytest.mark.unit
def test_json_formatter_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    data = json.loads(JSONFormatter().format(record))

    assert "RuntimeError: boom" in data["exception"]


@pytest.mark.unit
def test_standard_formatter():
    set_request_id("req-456")

    line = StandardFormatter().format(make_record())

    assert "INFO" in line
    assert "src.core.sessions - Session created" in line
    assert line.endswith("(request_id=req-456)")


@pytest.mark.unit
def test_request_id_context():
    assert get_request_id() is None

    set_request_id("req-789")
    assert get_request_id() == "req-789"

    clear_request_id()
    assert get_request_id() is None


@pytest.mark.unit
def test_setup_logging_env_overrides(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("JSON_LOGS", "true")
    monkeypatch.delenv("LOG_FILE", raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level

    try:
        setup_logging(level="WARNING", json_logs=False)

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
