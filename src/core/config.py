"""
Runtime configuration for the AngstromSCD gateway.

All settings come from environment variables (a local .env file is loaded
first when present). The only value that gates behaviour is E2B_API_KEY:
without it the code executor reports "disconnected" and refuses to create
sessions.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Languages accepted by the sandbox
SUPPORTED_LANGUAGES = ("python", "javascript", "r", "sql")

# Validation bounds for ExecutionRequest (enforced by the request schema)
TIMEOUT_MIN_SECONDS = 1
TIMEOUT_MAX_SECONDS = 300
TIMEOUT_DEFAULT_SECONDS = 60
MEMORY_MIN_MB = 128
MEMORY_MAX_MB = 8192
MEMORY_DEFAULT_MB = 1024

# Fixed resource defaults for registry tool dispatch (never caller-overridable)
TOOL_TIMEOUT_SECONDS = 120
TOOL_MEMORY_LIMIT_MB = 1024

SANDBOX_BACKENDS = ("mock", "e2b")

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000"


@dataclass(frozen=True)
class Settings:
    """
    Gateway settings.

    Attributes:
        e2b_api_key: E2B credential; None means code execution is disabled
        e2b_template_id: Optional custom E2B template
        sandbox_backend: "mock" (placeholder results) or "e2b" (real sandbox)
        cors_origins: Allowed frontend origins
    """

    e2b_api_key: Optional[str] = None
    e2b_template_id: Optional[str] = None
    sandbox_backend: str = "mock"
    cors_origins: List[str] = field(
        default_factory=lambda: DEFAULT_CORS_ORIGINS.split(",")
    )

    def __post_init__(self):
        if self.sandbox_backend not in SANDBOX_BACKENDS:
            raise ValueError(
                f"Unknown sandbox backend: '{self.sandbox_backend}'. "
                f"Valid backends: {list(SANDBOX_BACKENDS)}"
            )

    @property
    def is_configured(self) -> bool:
        """True when an E2B credential is present"""
        return bool(self.e2b_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        Environment Variables:
            E2B_API_KEY: E2B credential (execution disabled when unset)
            E2B_TEMPLATE_ID: Optional custom sandbox template
            SANDBOX_BACKEND: "mock" (default) or "e2b"
            CORS_ORIGINS: Comma-separated list of allowed origins
        """
        load_dotenv()

        origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)

        return cls(
            e2b_api_key=os.getenv("E2B_API_KEY") or None,
            e2b_template_id=os.getenv("E2B_TEMPLATE_ID") or None,
            sandbox_backend=os.getenv("SANDBOX_BACKEND", "mock").strip().lower(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
