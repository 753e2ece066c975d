"""
Code Execution Dispatcher

CodeExecutorService turns execution requests into exactly one
ExecutionResult each:

1. Resolve a session (create one when the caller gives none)
2. Validate the session exists
3. Run the request in the sandbox backend under a deadline
4. Convert the outcome, or any exception, into a result

Errors never escape execute_code(): they become `failed` (or `timeout`)
results, so the HTTP layer returns the same envelope shape for successful
and failed executions.
"""

import asyncio
import base64
import json
import logging
import re
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from ..models.execution import (
    ErrorDetails,
    ExecutionEnvironment,
    ExecutionRequest,
    ExecutionResult,
    ServiceHealth,
)
from ..models.session import CleanupSummary, SessionStatus
from ..models.tool import AnalysisTool
from .backends import ExecutionOutcome, MockSandboxBackend, SandboxBackend
from .config import TOOL_MEMORY_LIMIT_MB, TOOL_TIMEOUT_SECONDS, Settings
from .exceptions import ConfigurationError, SandboxError, SandboxTimeoutError
from .sessions import SessionStore
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

# Directory inside the sandbox where uploads land
UPLOAD_DIR = "/home/user/uploads"

MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "pdf": "application/pdf",
    "csv": "text/csv",
    "json": "application/json",
    "txt": "text/plain",
    "html": "text/html",
    "py": "text/x-python",
}

# Binds `patient_data` and the names tool templates use without importing
TOOL_PREAMBLE = '''import base64
import json
from datetime import datetime

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

# Decode patient data from base64 (safe for ANY characters)
_patient_data_b64 = "{payload}"
patient_data = json.loads(base64.b64decode(_patient_data_b64).decode("utf-8"))

# ==================== ANALYSIS TEMPLATE ====================
'''

_ERROR_LINE = re.compile(r"^([A-Za-z_][\w.]*(?:Error|Exception|Exit|Interrupt|Warning))\b:?\s*(.*)$")
_LINE_NUMBER = re.compile(r"line (\d+)")


def get_mime_type(filename: str) -> str:
    """MIME type from file extension (application/octet-stream when unknown)"""
    suffix = PurePosixPath(filename).suffix.lstrip(".").lower()
    return MIME_TYPES.get(suffix, "application/octet-stream")


def parse_error_details(stderr: str, exit_code: int) -> ErrorDetails:
    """
    Build ErrorDetails from a failed process' stderr.

    For a Python traceback the last line names the exception
    (e.g. "NameError: name 'x' is not defined") and the last
    "line N" reference is where it was raised.
    """
    lines = [line.strip() for line in (stderr or "").splitlines() if line.strip()]
    if not lines:
        return ErrorDetails(
            error_type="ExecutionError",
            error_message=f"Process exited with code {exit_code}",
        )

    error_type = "ExecutionError"
    error_message = lines[-1]
    match = _ERROR_LINE.match(lines[-1])
    if match:
        error_type = match.group(1).split(".")[-1]
        error_message = match.group(2) or lines[-1]

    line_numbers = _LINE_NUMBER.findall(stderr)

    return ErrorDetails(
        error_type=error_type,
        error_message=error_message,
        line_number=int(line_numbers[-1]) if line_numbers else None,
        stack_trace=stderr if len(lines) > 1 else None,
    )


class CodeExecutorService:
    """
    Dispatches code and analysis-tool executions to a sandbox backend.

    Collaborators are injected so each instance (and each test) gets its own
    session map:

        settings: Gateway settings (E2B_API_KEY gates session creation)
        backend: Sandbox backend (MockSandboxBackend when omitted)
        store: Session store (built with backend.close_session as release hook when omitted)
        tools: Analysis tool registry (MEDICAL_ANALYSIS_TOOLS when omitted)

    Example:
        >>> executor = CodeExecutorService(Settings(e2b_api_key="e2b_..."))
        >>> result = await executor.execute_code(ExecutionRequest(code="print(1)"))
        >>> result.status
        'completed'
    """

    def __init__(
        self,
        settings: Settings,
        backend: Optional[SandboxBackend] = None,
        store: Optional[SessionStore] = None,
        tools: Optional[ToolRegistry] = None
    ):
        self.settings = settings
        self.backend = backend or MockSandboxBackend()
        self.store = store or SessionStore(release=self.backend.close_session)
        self.tools = tools or ToolRegistry()
        self._status_counts: Counter = Counter()

        if not settings.is_configured:
            logger.warning("E2B_API_KEY not found. Code execution will be disabled.")
        else:
            logger.info(f"CodeExecutorService initialized with {self.backend.name} backend")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self) -> str:
        """
        Create a new execution session.

        Raises:
            ConfigurationError: If no E2B API key is configured
            SandboxError: If the backend cannot prepare the session
        """
        if not self.settings.is_configured:
            raise ConfigurationError("E2B API key not configured", setting="E2B_API_KEY")

        session_id = self.store.create()
        try:
            await self.backend.open_session(session_id)
        except Exception as e:
            await self.store.destroy(session_id)
            raise SandboxError(f"Failed to create E2B session: {e}")

        logger.info(f"Execution session created: {session_id}")
        return session_id

    def get_session_status(self, session_id: str) -> SessionStatus:
        return self.store.status(session_id)

    def list_active_sessions(self) -> List[str]:
        return self.store.list_active()

    async def destroy_session(self, session_id: str) -> None:
        """Destroy a session; unknown ids are ignored"""
        if await self.store.destroy(session_id):
            logger.info(f"Execution session destroyed: {session_id}")

    async def cleanup(self) -> CleanupSummary:
        """Destroy all sessions (see SessionStore.cleanup)"""
        return await self.store.cleanup()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_code(
        self,
        request: ExecutionRequest,
        session_id: Optional[str] = None
    ) -> ExecutionResult:
        """
        Execute a request in a session. Never raises.

        Args:
            request: Validated execution request
            session_id: Existing session; a new one is created when omitted

        Returns:
            ExecutionResult with status completed, failed or timeout
        """
        start = time.perf_counter()
        started_at = datetime.now(timezone.utc)
        execution_id = str(uuid.uuid4())

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        try:
            current_session_id = session_id or await self.create_session()
            self.store.get(current_session_id)

            logger.debug(
                f"Dispatching {execution_id} to {self.backend.name} backend "
                f"(session: {current_session_id}, timeout: {request.timeout_seconds}s)"
            )

            try:
                outcome = await asyncio.wait_for(
                    self.backend.run(current_session_id, request),
                    timeout=request.timeout_seconds
                )
            except (asyncio.TimeoutError, SandboxTimeoutError):
                logger.error(f"Execution {execution_id} timed out after {request.timeout_seconds}s")
                await self._interrupt(current_session_id)
                result = ExecutionResult.failed(
                    execution_id=execution_id,
                    started_at=started_at,
                    execution_time_ms=elapsed_ms(),
                    error_details=ErrorDetails(
                        error_type="TimeoutError",
                        error_message=f"Execution exceeded {request.timeout_seconds}s timeout",
                    ),
                    status="timeout",
                )
            else:
                result = self._to_result(execution_id, started_at, elapsed_ms(), outcome)

        except Exception as e:
            logger.error(f"Execution {execution_id} failed: {e}")
            result = ExecutionResult.failed(
                execution_id=execution_id,
                started_at=started_at,
                execution_time_ms=elapsed_ms(),
                error_details=ErrorDetails(
                    error_type="SystemError",
                    error_message=str(e) or type(e).__name__,
                ),
            )

        self._status_counts[result.status] += 1
        return result

    async def _interrupt(self, session_id: str) -> None:
        """Stop the backend command left running by a timed-out execution"""
        try:
            await self.backend.interrupt(session_id)
        except Exception as e:
            logger.warning(f"Could not interrupt session {session_id}: {e}")

    def _to_result(
        self,
        execution_id: str,
        started_at: datetime,
        execution_time_ms: int,
        outcome: ExecutionOutcome
    ) -> ExecutionResult:
        if outcome.exit_code == 0:
            return ExecutionResult.completed(
                execution_id=execution_id,
                started_at=started_at,
                execution_time_ms=execution_time_ms,
                stdout=outcome.stdout,
                stderr=outcome.stderr or None,
                return_value=outcome.return_value,
                files_created=outcome.files_created or None,
            )

        logger.warning(f"Execution {execution_id} exited with code {outcome.exit_code}")
        return ExecutionResult.failed(
            execution_id=execution_id,
            started_at=started_at,
            execution_time_ms=execution_time_ms,
            error_details=parse_error_details(outcome.stderr, outcome.exit_code),
            stderr=outcome.stderr or None,
        )

    def build_tool_request(self, tool: AnalysisTool, data: Any) -> ExecutionRequest:
        """
        Translate an analysis tool plus its input data into an ExecutionRequest.

        Language and resource limits are fixed (python, 120s, 1024MB). The
        data is bound as `patient_data` and its shape is not validated here.
        """
        return ExecutionRequest(
            code=self.bind_patient_data(tool.code_template, data),
            language="python",
            environment=ExecutionEnvironment(packages=list(tool.required_packages)),
            timeout_seconds=TOOL_TIMEOUT_SECONDS,
            memory_limit_mb=TOOL_MEMORY_LIMIT_MB,
        )

    @staticmethod
    def bind_patient_data(template: str, data: Any) -> str:
        """
        Prepend a preamble that decodes `data` into a `patient_data` variable.

        Uses base64 so the payload survives any characters (quotes,
        newlines, backslashes) inside the generated source.
        """
        data_json = json.dumps(data, default=str)
        payload = base64.b64encode(data_json.encode("utf-8")).decode("ascii")
        return TOOL_PREAMBLE.format(payload=payload) + template

    async def execute_medical_analysis(
        self,
        tool: AnalysisTool,
        data: Any,
        session_id: Optional[str] = None
    ) -> ExecutionResult:
        """Run an analysis tool with `data` bound as patient_data. Never raises."""
        try:
            request = self.build_tool_request(tool, data)
        except (TypeError, ValueError) as e:
            logger.error(f"Could not build request for tool {tool.tool_name}: {e}")
            result = ExecutionResult.failed(
                execution_id=str(uuid.uuid4()),
                started_at=datetime.now(timezone.utc),
                execution_time_ms=0,
                error_details=ErrorDetails(error_type="SystemError", error_message=str(e)),
            )
            self._status_counts[result.status] += 1
            return result

        logger.info(f"Running analysis tool: {tool.tool_name}")
        return await self.execute_code(request, session_id)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_file(self, session_id: str, filename: str, content: bytes) -> str:
        """
        Store a file in the session.

        Returns:
            Path of the stored file; pass it to download_file() to read it back

        Raises:
            SessionNotFoundError: If the session does not exist
            ValueError: If filename has no usable name component
        """
        self.store.get(session_id)

        name = PurePosixPath(filename).name
        if not name or name in (".", ".."):
            raise ValueError(f"Invalid filename: '{filename}'")

        path = f"{UPLOAD_DIR}/{name}"
        await self.backend.write_file(session_id, path, content)
        logger.info(f"Uploaded {len(content)} bytes to {path} (session: {session_id})")
        return path

    async def download_file(self, session_id: str, path: str) -> bytes:
        """
        Read a file from the session.

        Raises:
            SessionNotFoundError: If the session does not exist
            SandboxFileNotFoundError: If the path was never stored
        """
        self.store.get(session_id)
        return await self.backend.read_file(session_id, path)

    # ------------------------------------------------------------------
    # Health & metrics
    # ------------------------------------------------------------------

    async def health_check(self) -> ServiceHealth:
        """
        Report backend connectivity. Never raises.

        The credential is only checked for presence; the backend is not probed.
        """
        if not self.settings.is_configured:
            return ServiceHealth(status="disconnected", message="E2B API key not configured")

        return ServiceHealth(status="connected")

    def get_stats(self) -> Dict[str, Any]:
        """Session and dispatch counters for the /metrics endpoint"""
        return {
            "backend": self.backend.name,
            "active_sessions": len(self.store),
            "executions": {
                status: self._status_counts.get(status, 0)
                for status in ("completed", "failed", "timeout")
            },
            "total_executions": sum(self._status_counts.values()),
        }
