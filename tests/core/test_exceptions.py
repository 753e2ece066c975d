"""
Unit Tests for Custom Exceptions

Tests cover:
- Exception hierarchy
- retry_allowed flag behavior
- Exception attributes
"""

import pytest

from src.core.exceptions import (
    AngstromException,
    CodeExecutionError,
    ConfigurationError,
    ExecutorError,
    SandboxConnectionError,
    SandboxError,
    SandboxFileNotFoundError,
    SandboxTimeoutError,
    SessionNotFoundError,
    ToolNotFoundError,
)


@pytest.mark.unit
def test_base_exception_defaults():
    exc = AngstromException("Test error")

    assert str(exc) == "Test error"
    assert exc.message == "Test error"
    assert exc.retry_allowed is True


@pytest.mark.unit
def test_configuration_error_no_retry():
    exc = ConfigurationError("E2B API key not configured", setting="E2B_API_KEY")

    assert isinstance(exc, AngstromException)
    assert exc.retry_allowed is False
    assert exc.setting == "E2B_API_KEY"


@pytest.mark.unit
def test_session_not_found_message():
    exc = SessionNotFoundError("session_abc")

    assert str(exc) == "Session session_abc not found"
    assert exc.session_id == "session_abc"
    assert exc.retry_allowed is False


@pytest.mark.unit
def test_file_not_found_attributes():
    exc = SandboxFileNotFoundError("session_abc", "/home/user/uploads/a.txt")

    assert exc.session_id == "session_abc"
    assert exc.path == "/home/user/uploads/a.txt"
    assert "/home/user/uploads/a.txt" in str(exc)


@pytest.mark.unit
def test_tool_not_found_lists_available_tools():
    exc = ToolNotFoundError("unknown", available=["lab_trend_analysis", "voe_risk_analysis"])

    assert "unknown" in str(exc)
    assert "voe_risk_analysis" in str(exc)
    assert exc.retry_allowed is False


@pytest.mark.unit
def test_sandbox_errors_allow_retry():
    timeout = SandboxTimeoutError("Execution timeout", timeout_seconds=60)
    connection = SandboxConnectionError("Connection failed")

    for exc in (timeout, connection):
        assert isinstance(exc, SandboxError)
        assert isinstance(exc, ExecutorError)
        assert exc.retry_allowed is True

    assert timeout.timeout_seconds == 60


@pytest.mark.unit
def test_sandbox_error_id():
    assert SandboxError("crashed", sandbox_id="sbx-123").sandbox_id == "sbx-123"
    assert SandboxError("crashed").sandbox_id is None


@pytest.mark.unit
def test_code_execution_error_no_retry():
    exc = CodeExecutionError(
        "Syntax error",
        code="print('hello",
        error_details="SyntaxError: unterminated string"
    )

    assert isinstance(exc, ExecutorError)
    assert exc.retry_allowed is False
    assert exc.code == "print('hello"
    assert exc.error_details == "SyntaxError: unterminated string"
