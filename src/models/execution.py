"""
Execution Models
Request/result types for sandboxed code execution
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.config import (
    MEMORY_DEFAULT_MB,
    MEMORY_MAX_MB,
    MEMORY_MIN_MB,
    TIMEOUT_DEFAULT_SECONDS,
    TIMEOUT_MAX_SECONDS,
    TIMEOUT_MIN_SECONDS,
)

Language = Literal["python", "javascript", "r", "sql"]

# pending/running/timeout are reserved for real backends; the mock only
# ever produces completed or failed
ExecutionStatus = Literal["pending", "running", "completed", "failed", "timeout"]


class ExecutionEnvironment(BaseModel):
    """Optional sandbox environment for one execution"""
    packages: Optional[List[str]] = None
    environment_variables: Optional[Dict[str, str]] = None
    working_directory: Optional[str] = None


class ExecutionRequest(BaseModel):
    """
    A generic code execution request.

    timeout_seconds and memory_limit_mb are declared ceilings; out-of-range
    values are rejected here, at the validation boundary.
    """
    code: str = Field(..., description="Source text to run")
    language: Language = Field("python", description="Sandbox language")
    environment: Optional[ExecutionEnvironment] = None
    timeout_seconds: int = Field(
        TIMEOUT_DEFAULT_SECONDS, ge=TIMEOUT_MIN_SECONDS, le=TIMEOUT_MAX_SECONDS
    )
    memory_limit_mb: int = Field(
        MEMORY_DEFAULT_MB, ge=MEMORY_MIN_MB, le=MEMORY_MAX_MB
    )

    class Config:
        json_schema_extra = {
            "example": {
                "code": "print(1)",
                "language": "python",
                "timeout_seconds": 60,
                "memory_limit_mb": 1024
            }
        }


class ErrorDetails(BaseModel):
    error_type: str
    error_message: str
    line_number: Optional[int] = None
    stack_trace: Optional[str] = None


class FileInfo(BaseModel):
    """A file stored in (or produced by) a session"""
    filename: str
    path: str
    size_bytes: int
    mime_type: Optional[str] = None


class ExecutionResult(BaseModel):
    """
    Outcome of exactly one dispatch call.

    A completed result carries output fields and no error_details; a failed or
    timed-out result carries error_details and no output fields. Use the
    completed()/failed() constructors rather than building one by hand.
    """
    execution_id: str
    status: ExecutionStatus
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    return_value: Optional[Any] = None
    files_created: Optional[List[FileInfo]] = None
    execution_time_ms: Optional[int] = None
    memory_used_mb: Optional[float] = None
    error_details: Optional[ErrorDetails] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_outcome_fields(self):
        if self.status == "completed":
            if self.error_details is not None:
                raise ValueError("completed result cannot carry error_details")
            if self.stdout is None:
                raise ValueError("completed result requires stdout")
        elif self.status in ("failed", "timeout"):
            if self.error_details is None:
                raise ValueError(f"{self.status} result requires error_details")
            if self.stdout is not None or self.return_value is not None:
                raise ValueError(f"{self.status} result cannot carry output fields")
        return self

    @classmethod
    def completed(
        cls,
        execution_id: str,
        started_at: datetime,
        execution_time_ms: int,
        stdout: str = "",
        stderr: Optional[str] = None,
        return_value: Any = None,
        files_created: Optional[List[FileInfo]] = None,
        memory_used_mb: Optional[float] = None,
    ) -> "ExecutionResult":
        return cls(
            execution_id=execution_id,
            status="completed",
            stdout=stdout,
            stderr=stderr,
            return_value=return_value,
            files_created=files_created,
            memory_used_mb=memory_used_mb,
            execution_time_ms=execution_time_ms,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

    @classmethod
    def failed(
        cls,
        execution_id: str,
        started_at: datetime,
        execution_time_ms: int,
        error_details: ErrorDetails,
        stderr: Optional[str] = None,
        status: ExecutionStatus = "failed",
    ) -> "ExecutionResult":
        return cls(
            execution_id=execution_id,
            status=status,
            stderr=stderr,
            execution_time_ms=execution_time_ms,
            error_details=error_details,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )


class ServiceHealth(BaseModel):
    """Connectivity status of one external service"""
    status: Literal["connected", "disconnected", "error"]
    message: Optional[str] = None
