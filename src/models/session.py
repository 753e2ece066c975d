"""
Session Models
Bookkeeping records for execution sessions
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel


@dataclass(frozen=True)
class ExecutionSession:
    """
    A handle grouping execution and file operations.

    Immutable after creation; owned by SessionStore.
    """
    id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStatus(BaseModel):
    exists: bool
    active: bool


class CleanupSummary(BaseModel):
    """Aggregate outcome of SessionStore.cleanup()"""
    destroyed: int = 0
    failed: int = 0
    failed_session_ids: List[str] = []
