"""
FastAPI main application
REST API endpoints for the AngstromSCD gateway
"""

import base64
import binascii
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.backends import MockSandboxBackend, get_backend
from ..core.config import Settings
from ..core.exceptions import (
    ConfigurationError,
    ExecutorError,
    SandboxFileNotFoundError,
    SessionNotFoundError,
    ToolNotFoundError,
)
from ..core.executor import CodeExecutorService, get_mime_type
from ..core.logging_config import clear_request_id, get_request_id, set_request_id, setup_logging
from ..core.sessions import SessionStore
from ..core.tools import ToolRegistry
from ..models.execution import ExecutionRequest, FileInfo
from .schemas import (
    ApiError,
    ApiResponse,
    EndpointInfo,
    ErrorCode,
    FileUploadRequest,
    HealthCheckResponse,
    ResponseMetadata,
    ServiceDiscoveryResponse,
    ServiceStatuses,
    ToolExecutionRequest,
)

VERSION = "1.0.0"
SERVICE_NAME = "angstromscd-api"

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

# Uses JSON logs in production (JSON_LOGS=true), standard logs in development
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

settings = Settings.from_env()
START_TIME = time.monotonic()


def build_code_executor(app_settings: Settings) -> CodeExecutorService:
    """
    Wire a dispatcher with a fresh session store and tool registry.

    A missing credential is a warning, not a crash: the mock backend is used
    and the executor reports "disconnected".
    """
    try:
        backend = get_backend(app_settings)
    except ConfigurationError as e:
        logger.warning(f"{e.message} Falling back to mock sandbox backend.")
        backend = MockSandboxBackend()

    return CodeExecutorService(
        settings=app_settings,
        backend=backend,
        store=SessionStore(release=backend.close_session),
        tools=ToolRegistry(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.code_executor = build_code_executor(settings)
    logger.info(f"AngstromSCD API starting (version {VERSION})")
    yield
    summary = await app.state.code_executor.cleanup()
    logger.info(
        "AngstromSCD API stopped",
        extra={"sessions_destroyed": summary.destroyed, "sessions_failed": summary.failed}
    )


# ============================================================================
# FASTAPI APP CONFIGURATION
# ============================================================================

app = FastAPI(
    title="AngstromSCD API",
    description="""
# AngstromSCD Medical Research Assistant API

Gateway for the medical-research-assistant prototype. Runs code and canned
medical analyses in an E2B sandbox.

## Code Execution Flow

1. **POST /api/integrations/e2b/sessions** - Create a session (optional)
2. **POST /api/integrations/e2b/execute** - Run code (a session is created if none is given)
3. **POST /api/integrations/e2b/tools/{tool_name}/execute** - Run an analysis tool
4. **DELETE /api/integrations/e2b/sessions/{id}** - Release the session

Every response uses the same envelope:

```json
{"success": true, "data": {...}, "metadata": {"timestamp": "...", "request_id": "...", "processing_time_ms": 3}}
```

A failed execution still returns `success: true`; check `data.status`
(`completed`, `failed`, `timeout`) and `data.error_details`.

## Authentication

Currently open API.
    """,
    version=VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health checks, discovery and metrics"
        },
        {
            "name": "execution",
            "description": "Sandboxed code execution and analysis tools"
        },
        {
            "name": "sessions",
            "description": "Execution session lifecycle and session files"
        }
    ]
)

# ============================================================================
# MIDDLEWARE - CORS Configuration
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)


# Dependency: Get the code executor built at startup
def get_code_executor(request: Request) -> CodeExecutorService:
    """Dependency for the process-wide CodeExecutorService"""
    return request.app.state.code_executor


# ============================================================================
# ENVELOPE HELPERS
# ============================================================================

def _metadata(processing_time_ms: int = 0) -> ResponseMetadata:
    return ResponseMetadata(
        timestamp=datetime.now(timezone.utc),
        request_id=get_request_id() or str(uuid.uuid4()),
        processing_time_ms=processing_time_ms,
    )


def success_response(data: Any, processing_time_ms: int = 0) -> Dict[str, Any]:
    return jsonable_encoder(
        ApiResponse(success=True, data=data, metadata=_metadata(processing_time_ms))
    )


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    body = ApiResponse(
        success=False,
        error=ApiError(code=code, message=message, details=details),
        metadata=_metadata(),
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# ============================================================================
# MIDDLEWARE - Request ID Tracking
# ============================================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Add a request ID to every request.

    - Uses X-Request-ID from the client or generates a UUID
    - Sets it in the logging context and echoes it in the response header
    - Logs method, path, status and duration
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    set_request_id(request_id)
    start = time.perf_counter()

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"{request.method} {request.url.path} - {response.status_code} ({elapsed_ms}ms)",
            extra={"status_code": response.status_code, "duration_ms": elapsed_ms}
        )
        return response

    except Exception as e:
        logger.exception("Unhandled exception in request", extra={"error": str(e)})
        raise

    finally:
        clear_request_id()


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

_HTTP_ERROR_CODES = {
    400: ErrorCode.INVALID_INPUT,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """HTTP errors (including unknown routes) in the envelope format"""
    code = _HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = "Endpoint not found" if exc.status_code == 404 and exc.detail == "Not Found" else str(exc.detail)
    return error_response(exc.status_code, code, message)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed JSON or out-of-range fields"""
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return error_response(400, ErrorCode.VALIDATION_ERROR, "Request validation failed", {"errors": errors})


@app.exception_handler(ConfigurationError)
async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    return error_response(503, ErrorCode.SERVICE_UNAVAILABLE, exc.message)


@app.exception_handler(SessionNotFoundError)
@app.exception_handler(SandboxFileNotFoundError)
@app.exception_handler(ToolNotFoundError)
async def not_found_exception_handler(request: Request, exc):
    return error_response(404, ErrorCode.RESOURCE_NOT_FOUND, exc.message)


@app.exception_handler(ExecutorError)
async def executor_exception_handler(request: Request, exc: ExecutorError):
    logger.error(f"Sandbox backend error: {exc.message}")
    return error_response(502, ErrorCode.E2B_SERVICE_ERROR, exc.message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last resort: anything that escaped the handlers above"""
    logger.error(f"Unhandled error: {exc}")
    return error_response(500, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


# ============================================================================
# ROOT, HEALTH & DISCOVERY
# ============================================================================

@app.get(
    "/",
    tags=["health"],
    summary="API root",
    description="Returns basic API information and links to documentation."
)
def root():
    """Root endpoint - Returns API info"""
    return {
        "message": "AngstromSCD API",
        "version": VERSION,
        "documentation": "/discovery",
        "health": "/health"
    }


@app.get(
    "/health",
    tags=["health"],
    summary="Aggregated service health",
    description="""
    Reports the status of each external service.

    - **healthy** (HTTP 200): code execution backend connected
    - **degraded** (HTTP 503): API is up but code execution is not configured
    - **unhealthy** (HTTP 503): health collection itself failed

    BAML and vector services are not integrated yet and always report `disconnected`.
    """
)
async def health_check(executor: CodeExecutorService = Depends(get_code_executor)):
    """Aggregated health check"""
    uptime = int(time.monotonic() - START_TIME)

    try:
        e2b_health = await executor.health_check()
        services = ServiceStatuses(
            baml_service="disconnected",
            vector_service="disconnected",
            e2b_service=e2b_health.status,
        )
        overall = "healthy" if e2b_health.status == "connected" else "degraded"
    except Exception as e:
        logger.exception("Health check failed", extra={"error": str(e)})
        services = ServiceStatuses(baml_service="error", vector_service="error", e2b_service="error")
        overall = "unhealthy"

    response = HealthCheckResponse(
        status=overall,
        version=VERSION,
        timestamp=datetime.now(timezone.utc),
        services=services,
        uptime_seconds=uptime,
    )
    return JSONResponse(
        status_code=200 if overall == "healthy" else 503,
        content=jsonable_encoder(response)
    )


@app.get(
    "/discovery",
    tags=["health"],
    summary="Service discovery",
    response_model=ServiceDiscoveryResponse
)
def discovery():
    """Lists the endpoints this service exposes"""
    prefix = "/api/integrations/e2b"
    endpoints = [
        EndpointInfo(path="/health", method="GET", description="Health check endpoint"),
        EndpointInfo(path="/discovery", method="GET", description="Service discovery endpoint"),
        EndpointInfo(path="/metrics", method="GET", description="Session and execution counters"),
        EndpointInfo(
            path=f"{prefix}/execute", method="POST",
            description="Execute code in E2B environment",
            parameters={"session_id": "string (query, optional)"}
        ),
        EndpointInfo(path=f"{prefix}/tools", method="GET", description="List medical analysis tools"),
        EndpointInfo(
            path=f"{prefix}/tools/:tool_name/execute", method="POST",
            description="Run a medical analysis tool",
            parameters={"data": "object", "session_id": "string"}
        ),
        EndpointInfo(path=f"{prefix}/sessions", method="POST", description="Create an execution session"),
        EndpointInfo(path=f"{prefix}/sessions", method="GET", description="List active sessions"),
        EndpointInfo(path=f"{prefix}/sessions", method="DELETE", description="Destroy all sessions"),
        EndpointInfo(path=f"{prefix}/sessions/:id", method="GET", description="Get session status"),
        EndpointInfo(path=f"{prefix}/sessions/:id", method="DELETE", description="Destroy a session"),
        EndpointInfo(
            path=f"{prefix}/sessions/:id/files", method="POST",
            description="Upload a file into a session",
            parameters={"filename": "string", "content_base64": "string"}
        ),
        EndpointInfo(
            path=f"{prefix}/sessions/:id/files", method="GET",
            description="Download a file from a session",
            parameters={"path": "string (query)"}
        ),
    ]
    return ServiceDiscoveryResponse(
        service_name=SERVICE_NAME,
        version=VERSION,
        endpoints=endpoints,
        dependencies=["e2b"],
        health_check_url="/health",
    )


@app.get(
    "/metrics",
    tags=["health"],
    summary="Execution metrics",
    description="Active session count and dispatch counts by result status since startup."
)
async def get_metrics(executor: CodeExecutorService = Depends(get_code_executor)):
    """Session and execution counters"""
    stats = executor.get_stats()
    stats["uptime_seconds"] = int(time.monotonic() - START_TIME)
    return success_response(stats)


# ============================================================================
# CODE EXECUTION
# ============================================================================

@app.post(
    "/api/integrations/e2b/execute",
    tags=["execution"],
    summary="Execute code",
    description="""
    Run code in the sandbox.

    - **session_id** (query, optional): existing session; a new one is created otherwise
    - **timeout_seconds**: 1-300 (default 60)
    - **memory_limit_mb**: 128-8192 (default 1024)

    Execution failures are returned as `data.status = "failed"` with HTTP 200.
    """
)
async def execute_code(
    execution_request: ExecutionRequest,
    session_id: Optional[str] = Query(None, description="Existing execution session"),
    executor: CodeExecutorService = Depends(get_code_executor)
):
    """Dispatch one execution request"""
    try:
        result = await executor.execute_code(execution_request, session_id=session_id)
    except Exception as e:
        logger.exception("Code execution dispatch failed")
        return error_response(500, ErrorCode.E2B_SERVICE_ERROR, str(e) or "E2B service error")

    return success_response(result, processing_time_ms=result.execution_time_ms or 0)


@app.get(
    "/api/integrations/e2b/tools",
    tags=["execution"],
    summary="List analysis tools"
)
def list_tools(executor: CodeExecutorService = Depends(get_code_executor)):
    """Registered medical analysis tools (templates omitted)"""
    return success_response(executor.tools.describe())


@app.post(
    "/api/integrations/e2b/tools/{tool_name}/execute",
    tags=["execution"],
    summary="Run an analysis tool",
    description="""
    Run a registered medical analysis tool with `data` bound as `patient_data`.

    Language and limits are fixed by the tool (python, 120s, 1024MB).
    Unknown tool names return 404.
    """
)
async def execute_tool(
    tool_name: str,
    tool_request: ToolExecutionRequest,
    executor: CodeExecutorService = Depends(get_code_executor)
):
    """Dispatch one analysis tool"""
    tool = executor.tools.lookup(tool_name)
    result = await executor.execute_medical_analysis(
        tool, tool_request.data, session_id=tool_request.session_id
    )
    return success_response(result, processing_time_ms=result.execution_time_ms or 0)


# ============================================================================
# SESSIONS
# ============================================================================

@app.post(
    "/api/integrations/e2b/sessions",
    status_code=201,
    tags=["sessions"],
    summary="Create session"
)
async def create_session(executor: CodeExecutorService = Depends(get_code_executor)):
    """Create an execution session (503 when E2B is not configured)"""
    session_id = await executor.create_session()
    session = executor.store.get(session_id)
    return success_response({"session_id": session.id, "created_at": session.created_at})


@app.get(
    "/api/integrations/e2b/sessions",
    tags=["sessions"],
    summary="List active sessions"
)
async def list_sessions(executor: CodeExecutorService = Depends(get_code_executor)):
    session_ids = executor.list_active_sessions()
    return success_response({"sessions": session_ids, "total": len(session_ids)})


@app.delete(
    "/api/integrations/e2b/sessions",
    tags=["sessions"],
    summary="Destroy all sessions"
)
async def cleanup_sessions(executor: CodeExecutorService = Depends(get_code_executor)):
    """Destroy every session; returns destroyed/failed counts"""
    summary = await executor.cleanup()
    return success_response(summary)


@app.get(
    "/api/integrations/e2b/sessions/{session_id}",
    tags=["sessions"],
    summary="Get session status"
)
async def get_session_status(session_id: str, executor: CodeExecutorService = Depends(get_code_executor)):
    return success_response(executor.get_session_status(session_id))


@app.delete(
    "/api/integrations/e2b/sessions/{session_id}",
    tags=["sessions"],
    summary="Destroy session",
    description="Idempotent: destroying an unknown session succeeds."
)
async def destroy_session(session_id: str, executor: CodeExecutorService = Depends(get_code_executor)):
    await executor.destroy_session(session_id)
    return success_response({"session_id": session_id, "destroyed": True})


@app.post(
    "/api/integrations/e2b/sessions/{session_id}/files",
    status_code=201,
    tags=["sessions"],
    summary="Upload file"
)
async def upload_file(
    session_id: str,
    upload: FileUploadRequest,
    executor: CodeExecutorService = Depends(get_code_executor)
):
    """Store a base64-encoded file in the session"""
    try:
        content = base64.b64decode(upload.content_base64, validate=True)
    except (binascii.Error, ValueError):
        return error_response(400, ErrorCode.INVALID_INPUT, "content_base64 is not valid base64")

    try:
        path = await executor.upload_file(session_id, upload.filename, content)
    except ValueError as e:
        return error_response(400, ErrorCode.INVALID_INPUT, str(e))

    info = FileInfo(
        filename=upload.filename,
        path=path,
        size_bytes=len(content),
        mime_type=get_mime_type(upload.filename),
    )
    return success_response(info)


@app.get(
    "/api/integrations/e2b/sessions/{session_id}/files",
    tags=["sessions"],
    summary="Download file",
    response_class=Response
)
async def download_file(
    session_id: str,
    path: str = Query(..., description="Path returned by the upload endpoint"),
    executor: CodeExecutorService = Depends(get_code_executor)
):
    """Raw file bytes with a MIME type derived from the extension"""
    content = await executor.download_file(session_id, path)
    return Response(content=content, media_type=get_mime_type(path))
