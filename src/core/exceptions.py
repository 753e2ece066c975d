"""
Custom Exceptions for the AngstromSCD gateway

This module defines the error taxonomy used by the session store, the
sandbox backends and the code execution dispatcher.

Exception Hierarchy:
- AngstromException (base)
  - ConfigurationError (don't retry)
  - SessionNotFoundError (don't retry - create a new session)
  - SandboxFileNotFoundError (don't retry)
  - ToolNotFoundError (don't retry)
  - ExecutorError
    - SandboxError (retry)
      - SandboxTimeoutError (retry)
      - SandboxConnectionError (retry)
    - CodeExecutionError (don't retry - fix the code)
"""

from typing import List, Optional


class AngstromException(Exception):
    """Base exception for all gateway errors"""

    def __init__(self, message: str, retry_allowed: bool = True):
        super().__init__(message)
        self.message = message
        self.retry_allowed = retry_allowed


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigurationError(AngstromException):
    """
    Required credential or setting is missing (e.g., E2B_API_KEY).
    Should NOT be retried - fix the environment.
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.setting = setting


# ============================================================================
# LOOKUP ERRORS
# ============================================================================

class SessionNotFoundError(AngstromException):
    """
    Referenced execution session does not exist (never created or already destroyed).
    Caller should create a new session.
    """

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found", retry_allowed=False)
        self.session_id = session_id


class SandboxFileNotFoundError(AngstromException):
    """File path was never uploaded to (or produced in) the session."""

    def __init__(self, session_id: str, path: str):
        super().__init__(f"File {path} not found in session {session_id}", retry_allowed=False)
        self.session_id = session_id
        self.path = path


class ToolNotFoundError(AngstromException):
    """Analysis tool name is not present in the registry."""

    def __init__(self, tool_name: str, available: Optional[List[str]] = None):
        available = available or []
        super().__init__(
            f"Unknown analysis tool: '{tool_name}'. "
            f"Available tools: {', '.join(available) or 'none'}",
            retry_allowed=False
        )
        self.tool_name = tool_name
        self.available = available


# ============================================================================
# EXECUTOR ERRORS
# ============================================================================

class ExecutorError(AngstromException):
    """Base class for sandbox backend errors"""
    pass


class SandboxError(ExecutorError):
    """
    Sandbox error (e.g., sandbox crashed, SDK failure).
    Should be retried.
    """

    def __init__(self, message: str, sandbox_id: Optional[str] = None):
        super().__init__(message, retry_allowed=True)
        self.sandbox_id = sandbox_id


class SandboxTimeoutError(SandboxError):
    """
    Sandbox call exceeded its deadline.
    Should be retried.
    """

    def __init__(self, message: str, timeout_seconds: Optional[int] = None):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class SandboxConnectionError(SandboxError):
    """
    Sandbox API unreachable (network issue, bad credentials at the edge).
    Should be retried.
    """

    def __init__(self, message: str):
        super().__init__(message)


class CodeExecutionError(ExecutorError):
    """
    User code error (syntax error, runtime error).
    Should NOT be retried - fix the code.
    """

    def __init__(self, message: str, code: Optional[str] = None, error_details: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.code = code
        self.error_details = error_details
