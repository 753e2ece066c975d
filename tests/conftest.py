"""
Pytest fixtures for gateway tests

This module provides shared fixtures for all tests:
- Settings with and without an E2B credential
- Fresh session stores, tool registries and dispatchers per test
- Backends that record requests or fail on demand
- FastAPI test client wired to a per-test dispatcher
"""

import pytest
from typing import List, Tuple

from src.core.backends import ExecutionOutcome, MockSandboxBackend
from src.core.config import Settings
from src.core.executor import CodeExecutorService
from src.core.sessions import SessionStore
from src.core.tools import ToolRegistry
from src.models.execution import ExecutionRequest


# ============================================================================
# SETTINGS FIXTURES
# ============================================================================

@pytest.fixture
def settings():
    """Settings with an E2B credential (mock backend)"""
    return Settings(e2b_api_key="e2b_test_key")


@pytest.fixture
def unconfigured_settings():
    """Settings without an E2B credential"""
    return Settings(e2b_api_key=None)


# ============================================================================
# BACKEND FIXTURES
# ============================================================================

class RecordingBackend(MockSandboxBackend):
    """Mock backend that remembers every request it ran"""

    def __init__(self, outcome: ExecutionOutcome = None):
        super().__init__()
        self.calls: List[Tuple[str, ExecutionRequest]] = []
        self.closed: List[str] = []
        self._outcome = outcome

    async def run(self, session_id, request):
        self.calls.append((session_id, request))
        if self._outcome is not None:
            return self._outcome
        return await super().run(session_id, request)

    async def close_session(self, session_id):
        self.closed.append(session_id)
        await super().close_session(session_id)


class FailingBackend(MockSandboxBackend):
    """Mock backend whose run() raises"""

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    async def run(self, session_id, request):
        raise self.error


@pytest.fixture
def recording_backend():
    return RecordingBackend()


# ============================================================================
# DISPATCHER FIXTURES
# ============================================================================

@pytest.fixture
def store():
    """Fresh session store with no release hook"""
    return SessionStore()


@pytest.fixture
def tools():
    return ToolRegistry()


@pytest.fixture
def executor(settings, recording_backend):
    """Dispatcher with a fresh store and a recording mock backend"""
    return CodeExecutorService(settings=settings, backend=recording_backend)


@pytest.fixture
def unconfigured_executor(unconfigured_settings):
    """Dispatcher without E2B credential"""
    return CodeExecutorService(settings=unconfigured_settings)


# ============================================================================
# API FIXTURES
# ============================================================================

@pytest.fixture
def client(executor):
    """
    TestClient whose routes use the per-test `executor`.

    Server exceptions are returned as responses so the 500 envelope can be asserted.
    """
    from fastapi.testclient import TestClient
    from src.api.main import app, get_code_executor

    app.dependency_overrides[get_code_executor] = lambda: executor
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def unconfigured_client(unconfigured_executor):
    from fastapi.testclient import TestClient
    from src.api.main import app, get_code_executor

    app.dependency_overrides[get_code_executor] = lambda: unconfigured_executor
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


# ============================================================================
# DATA FIXTURES
# ============================================================================

@pytest.fixture
def patient_data():
    return {"age": 12, "hbf_level": 3.2, "hemoglobin": 6.8}


@pytest.fixture
def capture_logs(caplog):
    """
    Fixture to capture logs for testing
    """
    import logging
    caplog.set_level(logging.DEBUG)
    return caplog
