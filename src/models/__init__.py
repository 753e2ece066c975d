"""
Models module - request, result, session and tool types
"""

from .execution import (
    ErrorDetails,
    ExecutionEnvironment,
    ExecutionRequest,
    ExecutionResult,
    FileInfo,
    ServiceHealth,
)
from .session import CleanupSummary, ExecutionSession, SessionStatus
from .tool import AnalysisTool, ToolParameters

__all__ = [
    "ErrorDetails",
    "ExecutionEnvironment",
    "ExecutionRequest",
    "ExecutionResult",
    "FileInfo",
    "ServiceHealth",
    "CleanupSummary",
    "ExecutionSession",
    "SessionStatus",
    "AnalysisTool",
    "ToolParameters",
]
