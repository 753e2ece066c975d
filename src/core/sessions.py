"""
Execution Session Store

In-memory registry of execution sessions keyed by id. The store is the only
component allowed to mutate the session map.

Every map mutation happens synchronously (no await between read and write),
so concurrent requests on the event loop never interleave mid-mutation and
no lock is needed. Releasing the backend resources of a destroyed session is
the only awaited step, and it runs after the id has already been removed.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional

from ..models.session import CleanupSummary, ExecutionSession, SessionStatus
from .exceptions import SessionNotFoundError

logger = logging.getLogger(__name__)

ReleaseHook = Callable[[str], Awaitable[None]]


class SessionStore:
    """
    Owns the lifecycle of execution sessions: create, look up, destroy,
    enumerate and bulk cleanup.

    Args:
        release: Optional coroutine called with the session id after a session
                 is removed (e.g., to kill the sandbox backing it). Failures in
                 the hook are logged, never raised to the caller.

    Example:
        >>> store = SessionStore()
        >>> session_id = store.create()
        >>> store.get(session_id).id == session_id
        True
    """

    def __init__(self, release: Optional[ReleaseHook] = None):
        self._sessions: Dict[str, ExecutionSession] = {}
        self._release = release

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create(self) -> str:
        """Allocate a fresh session and return its id"""
        session_id = f"session_{uuid.uuid4().hex}"
        self._sessions[session_id] = ExecutionSession(id=session_id)
        logger.debug(f"Session created: {session_id}")
        return session_id

    def get(self, session_id: str) -> ExecutionSession:
        """
        Look up a session.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def status(self, session_id: str) -> SessionStatus:
        exists = session_id in self._sessions
        return SessionStatus(exists=exists, active=exists)

    def list_active(self) -> List[str]:
        """Snapshot of current session ids (not a live view)"""
        return list(self._sessions.keys())

    async def destroy(self, session_id: str) -> bool:
        """
        Destroy a session. Unknown ids are a no-op.

        Returns:
            True if a session was removed, False if the id was unknown
        """
        try:
            return await self._remove(session_id)
        except Exception as e:
            logger.warning(f"Error closing session {session_id}: {e}")
            return True

    async def cleanup(self) -> CleanupSummary:
        """
        Destroy every session concurrently and wait for all of them.

        Individual release failures are logged and counted; the store is empty
        afterwards either way.
        """
        session_ids = self.list_active()
        if not session_ids:
            return CleanupSummary()

        results = await asyncio.gather(
            *(self._remove(session_id) for session_id in session_ids),
            return_exceptions=True
        )

        summary = CleanupSummary()
        for session_id, result in zip(session_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Error closing session {session_id}: {result}")
                summary.failed += 1
                summary.failed_session_ids.append(session_id)
            else:
                summary.destroyed += 1

        logger.info(
            f"Session cleanup finished: {summary.destroyed} destroyed, {summary.failed} failed",
            extra={"destroyed": summary.destroyed, "failed": summary.failed}
        )
        return summary

    async def _remove(self, session_id: str) -> bool:
        if self._sessions.pop(session_id, None) is None:
            return False

        logger.debug(f"Session destroyed: {session_id}")
        if self._release is not None:
            await self._release(session_id)
        return True
