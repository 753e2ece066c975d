"""
Pydantic schemas for API request/response validation
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCode:
    """Error codes returned in the envelope's error.code"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    E2B_SERVICE_ERROR = "E2B_SERVICE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# ENVELOPE
# ============================================================================

class ResponseMetadata(BaseModel):
    timestamp: datetime
    request_id: str
    processing_time_ms: int = 0


class ApiError(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ApiResponse(BaseModel):
    """Uniform wrapper returned by every endpoint: {success, data | error, metadata}"""
    success: bool
    data: Optional[Any] = None
    error: Optional[ApiError] = None
    metadata: ResponseMetadata


# ============================================================================
# CODE EXECUTION SCHEMAS
# ============================================================================

class ToolExecutionRequest(BaseModel):
    """Schema for running a registry analysis tool"""
    data: Optional[Any] = Field(
        default_factory=dict,
        description="Input bound as `patient_data` inside the analysis code"
    )
    session_id: Optional[str] = Field(None, description="Existing execution session")

    class Config:
        json_schema_extra = {
            "example": {
                "data": {"age": 12, "hbf_level": 3.2, "hemoglobin": 6.8}
            }
        }


class FileUploadRequest(BaseModel):
    """Schema for uploading a file into a session"""
    filename: str = Field(..., min_length=1, max_length=255)
    content_base64: str = Field(..., description="File content, base64-encoded")


# ============================================================================
# HEALTH & DISCOVERY SCHEMAS
# ============================================================================

ServiceState = Literal["connected", "disconnected", "error"]


class ServiceStatuses(BaseModel):
    baml_service: ServiceState
    vector_service: ServiceState
    e2b_service: ServiceState


class HealthCheckResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    timestamp: datetime
    services: ServiceStatuses
    uptime_seconds: int


class EndpointInfo(BaseModel):
    path: str
    method: str
    description: str
    parameters: Optional[Dict[str, str]] = None


class ServiceDiscoveryResponse(BaseModel):
    service_name: str
    version: str
    endpoints: List[EndpointInfo]
    dependencies: List[str]
    health_check_url: str
