"""
Sandbox Backends for the code execution dispatcher

This module defines where dispatched code actually runs:
- SandboxBackend: Abstract interface for all backends
- MockSandboxBackend: Placeholder results, in-memory files (DEFAULT)
- E2BSandboxBackend: One E2B cloud sandbox per execution session

The dispatcher only talks to SandboxBackend, so swapping the mock for a real
sandbox needs no change to dispatch logic.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..models.execution import ExecutionRequest, FileInfo
from .config import Settings
from .exceptions import (
    CodeExecutionError,
    ConfigurationError,
    SandboxConnectionError,
    SandboxError,
    SandboxFileNotFoundError,
    SandboxTimeoutError,
)

logger = logging.getLogger(__name__)

MOCK_STDOUT = "Mock execution completed successfully"
MOCK_RETURN_VALUE = {"message": "Mock result"}

# Lifetime of an E2B sandbox backing one session
SANDBOX_LIFETIME_SECONDS = 600

# language -> (file extension, interpreter command)
LANGUAGE_RUNNERS = {
    "python": (".py", "python3 {path}"),
    "javascript": (".js", "node {path}"),
    "r": (".R", "Rscript {path}"),
    "sql": (".sql", "sqlite3 /tmp/angstrom.db < {path}"),
}


@dataclass
class ExecutionOutcome:
    """Raw result of running one request in a backend"""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    return_value: Any = None
    files_created: List[FileInfo] = field(default_factory=list)
    sandbox_id: Optional[str] = None


def parse_return_value(stdout: str) -> Any:
    """
    Extract a return value from stdout.

    Analysis code prints its result as JSON; the last line (or the whole
    output, for pretty-printed JSON) that parses is the return value.
    """
    if not stdout or not stdout.strip():
        return None

    text = stdout.strip()
    start = min((i for i in (text.find("{"), text.find("[")) if i >= 0), default=-1)
    if start >= 0:
        try:
            return json.loads(text[start:])
        except json.JSONDecodeError:
            pass

    for line in reversed(text.split("\n")):
        line = line.strip()
        if not line or line[0] not in "{[":
            continue
        try:
            return json.loads(line)
        except json.JSONDecodeError:
            continue

    return None


class SandboxBackend(ABC):
    """
    Abstract interface for all sandbox backends.

    All operations are coroutines; every await is a cooperative suspension
    point for the dispatcher.
    """

    name: str = "abstract"

    @abstractmethod
    async def open_session(self, session_id: str) -> None:
        """Prepare backend resources for a new session"""

    @abstractmethod
    async def run(self, session_id: str, request: ExecutionRequest) -> ExecutionOutcome:
        """
        Run one request inside the session.

        Returns:
            ExecutionOutcome (a non-zero exit_code is an outcome, not an exception)

        Raises:
            ExecutorError: If the backend itself fails
        """

    @abstractmethod
    async def write_file(self, session_id: str, path: str, content: bytes) -> None:
        """Store content at path inside the session"""

    @abstractmethod
    async def read_file(self, session_id: str, path: str) -> bytes:
        """
        Read a file previously stored in the session.

        Raises:
            SandboxFileNotFoundError: If path does not exist
        """

    @abstractmethod
    async def close_session(self, session_id: str) -> None:
        """Release backend resources for the session"""

    async def interrupt(self, session_id: str) -> None:
        """Stop whatever the session is running (called when a deadline fires)"""


class MockSandboxBackend(SandboxBackend):
    """
    Placeholder backend: no code runs.

    Every request reports success with fixed output. Files are kept in
    memory per session so upload/download round-trips behave as they would
    against a real sandbox.
    """

    name = "mock"

    def __init__(self):
        self._files: Dict[str, Dict[str, bytes]] = {}

    async def open_session(self, session_id: str) -> None:
        self._files.setdefault(session_id, {})

    async def run(self, session_id: str, request: ExecutionRequest) -> ExecutionOutcome:
        await asyncio.sleep(0)
        logger.debug(f"Mock execution in {session_id} ({request.language}, {len(request.code)} chars)")
        return ExecutionOutcome(
            stdout=MOCK_STDOUT,
            return_value=dict(MOCK_RETURN_VALUE),
            sandbox_id=f"mock-{session_id}",
        )

    async def write_file(self, session_id: str, path: str, content: bytes) -> None:
        await asyncio.sleep(0)
        self._files.setdefault(session_id, {})[path] = bytes(content)

    async def read_file(self, session_id: str, path: str) -> bytes:
        await asyncio.sleep(0)
        files = self._files.get(session_id, {})
        if path not in files:
            raise SandboxFileNotFoundError(session_id, path)
        return files[path]

    async def close_session(self, session_id: str) -> None:
        self._files.pop(session_id, None)


class E2BSandboxBackend(SandboxBackend):
    """
    Runs code in E2B cloud sandboxes (https://e2b.dev).

    Each execution session is backed by one sandbox, created on
    open_session() and killed on close_session(). The E2B SDK is synchronous,
    so every SDK call runs in the default thread executor.

    Requires E2B_API_KEY. E2B_TEMPLATE_ID selects a custom template with the
    analysis packages (pandas, numpy, matplotlib, seaborn) pre-installed.
    """

    name = "e2b"

    def __init__(self, api_key: Optional[str] = None, template: Optional[str] = None):
        if not api_key:
            raise ConfigurationError(
                "E2B API key required. Set E2B_API_KEY environment variable.",
                setting="E2B_API_KEY"
            )
        self.api_key = api_key
        self.template = template
        self._sandboxes: Dict[str, Any] = {}
        self._pending: Dict[str, "asyncio.Future[None]"] = {}
        self._closed: Set[str] = set()

        if self.template:
            logger.info(f"E2BSandboxBackend initialized with custom template: {self.template}")
        else:
            logger.info("E2BSandboxBackend initialized with base template")

    async def _call(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _create_sync(self):
        from e2b import Sandbox

        create_kwargs = {
            "api_key": self.api_key,
            "timeout": SANDBOX_LIFETIME_SECONDS,
        }
        if self.template:
            create_kwargs["template"] = self.template

        return Sandbox.create(**create_kwargs)

    async def open_session(self, session_id: str) -> None:
        """
        Create the session's sandbox.

        Concurrent calls for the same session share one creation; a session
        closed while its sandbox is starting gets that sandbox killed.
        """
        if session_id in self._sandboxes:
            return

        pending = self._pending.get(session_id)
        if pending is None:
            pending = asyncio.ensure_future(self._start_sandbox(session_id))
            self._pending[session_id] = pending
        await asyncio.shield(pending)

    async def _start_sandbox(self, session_id: str) -> None:
        try:
            try:
                sandbox = await self._call(self._create_sync)
            except Exception as e:
                raise self._classify(e, f"Failed to create E2B sandbox for {session_id}")

            sandbox_id = getattr(sandbox, "sandbox_id", None)
            if session_id in self._closed:
                try:
                    await self._kill(session_id, sandbox)
                except SandboxError as e:
                    logger.warning(e.message)
                raise SandboxError(
                    f"Session {session_id} was closed while its sandbox was starting",
                    sandbox_id=sandbox_id
                )

            self._sandboxes[session_id] = sandbox
            logger.debug(f"E2B sandbox {sandbox_id or 'unknown'} opened for {session_id}")
        finally:
            self._pending.pop(session_id, None)
            self._closed.discard(session_id)

    async def _sandbox_for(self, session_id: str):
        if session_id not in self._sandboxes:
            await self.open_session(session_id)
        return self._sandboxes[session_id]

    async def run(self, session_id: str, request: ExecutionRequest) -> ExecutionOutcome:
        sandbox = await self._sandbox_for(session_id)
        sandbox_id = getattr(sandbox, "sandbox_id", None)

        extension, command = LANGUAGE_RUNNERS[request.language]
        code_file = f"/tmp/angstrom_{uuid.uuid4().hex}{extension}"

        env = request.environment
        envs = env.environment_variables if env else None
        cwd = env.working_directory if env else None
        packages = env.packages if env else None

        try:
            await self._call(sandbox.files.write, code_file, request.code)

            if packages and request.language == "python":
                install = f"pip install --quiet {' '.join(packages)}"
                await self._call(
                    lambda: sandbox.commands.run(install, timeout=request.timeout_seconds)
                )

            execution = await self._call(
                lambda: sandbox.commands.run(
                    command.format(path=code_file),
                    envs=envs,
                    cwd=cwd,
                    timeout=request.timeout_seconds,
                )
            )
        except Exception as e:
            # CommandExitException carries the non-zero exit as data
            if hasattr(e, "exit_code") and hasattr(e, "stderr"):
                return ExecutionOutcome(
                    stdout=getattr(e, "stdout", "") or "",
                    stderr=e.stderr or "",
                    exit_code=e.exit_code,
                    sandbox_id=sandbox_id,
                )
            raise self._classify(e, f"E2B execution failed in sandbox {sandbox_id}", request.timeout_seconds)

        stdout = execution.stdout or ""
        return ExecutionOutcome(
            stdout=stdout,
            stderr=execution.stderr or "",
            exit_code=execution.exit_code,
            return_value=parse_return_value(stdout),
            sandbox_id=sandbox_id,
        )

    async def write_file(self, session_id: str, path: str, content: bytes) -> None:
        sandbox = await self._sandbox_for(session_id)
        try:
            await self._call(sandbox.files.write, path, content)
        except Exception as e:
            raise self._classify(e, f"Failed to upload file {path}")

    async def read_file(self, session_id: str, path: str) -> bytes:
        sandbox = await self._sandbox_for(session_id)
        try:
            content = await self._call(lambda: sandbox.files.read(path, format="bytes"))
        except Exception as e:
            if "notfound" in type(e).__name__.lower():
                raise SandboxFileNotFoundError(session_id, path)
            raise self._classify(e, f"Failed to download file {path}")
        return bytes(content)

    async def close_session(self, session_id: str) -> None:
        if session_id in self._pending:
            self._closed.add(session_id)

        sandbox = self._sandboxes.pop(session_id, None)
        if sandbox is None:
            return
        await self._kill(session_id, sandbox)

    async def interrupt(self, session_id: str) -> None:
        """
        Kill the session's sandbox so a timed-out command stops running.

        The session stays usable: the next run starts a fresh sandbox, without
        the files stored in the old one.
        """
        await self.close_session(session_id)

    async def _kill(self, session_id: str, sandbox) -> None:
        try:
            await self._call(sandbox.kill)
            logger.debug(f"E2B sandbox killed for {session_id}")
        except Exception as e:
            raise SandboxError(
                f"Failed to kill sandbox for {session_id}: {e}",
                sandbox_id=getattr(sandbox, "sandbox_id", None)
            )

    @staticmethod
    def _classify(error: Exception, context: str, timeout: Optional[int] = None) -> Exception:
        if isinstance(error, (SandboxError, CodeExecutionError, SandboxFileNotFoundError)):
            return error

        error_str = str(error).lower()
        message = f"{context}: {error}"
        if isinstance(error, TimeoutError) or "timeout" in error_str:
            return SandboxTimeoutError(message, timeout_seconds=timeout)
        if isinstance(error, ConnectionError) or "connection" in error_str or "network" in error_str:
            return SandboxConnectionError(message)
        return SandboxError(message)


def get_backend(settings: Settings) -> SandboxBackend:
    """
    Factory function: creates the backend selected by settings.sandbox_backend.

    Raises:
        ConfigurationError: If "e2b" is selected without an API key
    """
    if settings.sandbox_backend == "e2b":
        return E2BSandboxBackend(
            api_key=settings.e2b_api_key,
            template=settings.e2b_template_id
        )
    return MockSandboxBackend()
