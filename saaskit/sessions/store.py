"""
SaasKit Sessions - Session storage abstraction.

Defines the SessionStore protocol and the in-memory implementation:
- SessionStore: persistence contract keyed by session token
- MemoryStore: in-memory storage with a background expiry sweeper
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Union

from .core import Session, utcnow
from .faults import (
    InvalidSessionFault,
    SessionExpiredFault,
    SessionNotFoundFault,
)

logger = logging.getLogger("saaskit.sessions.store")


# ============================================================================
# SessionStore Protocol
# ============================================================================

class SessionStore(Protocol):
    """
    Abstract session storage interface.

    Stores are responsible ONLY for persistence - they do NOT compute expiry
    or rotate tokens. Policy lives in SessionManager.

    Sessions passed in and handed out are detached copies: a store never
    shares mutable state with its callers.

    All methods must be async and cancellation-safe.
    """

    async def create(self, session: Session) -> None:
        """
        Persist a new session under its token (last write wins).

        Raises:
            InvalidSessionFault: Session is None or has an empty token
        """
        ...

    async def get(self, token: str) -> Session:
        """
        Load a session by token.

        Raises:
            SessionNotFoundFault: No record for the token
            SessionExpiredFault: Record has expired (and was removed)
        """
        ...

    async def update(self, session: Session) -> None:
        """
        Replace the stored record with the given session.

        Raises:
            InvalidSessionFault: Session is None or has an empty token
            SessionNotFoundFault: No record for the token
        """
        ...

    async def update_activity(
        self,
        token: str,
        last_activity_at: datetime,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """
        Record activity without rewriting session data.

        Raises:
            SessionNotFoundFault: No record for the token
        """
        ...

    async def delete(self, token: str) -> None:
        """Remove a session. Deleting an absent token is not an error."""
        ...

    async def delete_expired(self) -> int:
        """
        Remove expired sessions from store.

        Returns:
            Number of sessions removed
        """
        ...

    async def close(self) -> None:
        """Gracefully shutdown store (stop background work)."""
        ...


@dataclass(frozen=True)
class StoreStats:
    """Point-in-time session counts."""

    total: int
    authenticated: int
    anonymous: int


# ============================================================================
# MemoryStore - In-Memory Storage
# ============================================================================

class MemoryStore:
    """
    In-memory session storage for development, tests and single-process
    deployments.

    Features:
    - Token-keyed dict guarded by one asyncio.Lock
    - Deep copies on every read and write (no shared mutable state)
    - Expired records removed on access and by a periodic sweeper

    NOT suitable for multi-process deployments (no sharing, no persistence).

    Example:
        >>> store = MemoryStore(cleanup_interval=timedelta(minutes=5))
        >>> await store.create(session)
        >>> loaded = await store.get(session.token)
        >>> assert loaded.id == session.id
        >>> await store.close()
    """

    def __init__(self, cleanup_interval: timedelta = timedelta(0)):
        """
        Initialize memory store.

        Args:
            cleanup_interval: Sweep period; zero or negative disables the sweeper
        """
        self.cleanup_interval = cleanup_interval
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._sweeper_task: Optional[asyncio.Task] = None
        self._initialized = False
        self._closed = False

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        """Start the background sweeper (no-op when disabled or already running)."""
        self._start_sweeper()

    def _start_sweeper(self) -> None:
        if self._initialized or self._closed:
            return
        if self.cleanup_interval.total_seconds() <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop, nothing to schedule on
            return
        self._sweeper_task = loop.create_task(self._sweeper())
        self._initialized = True

    async def close(self) -> None:
        """Stop the sweeper and wait for it to exit. Idempotent."""
        self._closed = True
        if self._sweeper_task and not self._sweeper_task.done():
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
        self._sweeper_task = None
        self._initialized = False

    async def _sweeper(self) -> None:
        """Background task to remove expired sessions."""
        interval = self.cleanup_interval.total_seconds()
        while True:
            try:
                await asyncio.sleep(interval)
                await self.delete_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Session sweep failed: {e}", exc_info=True)

    # ========================================================================
    # SessionStore
    # ========================================================================

    async def create(self, session: Session) -> None:
        if session is None or not session.token:
            raise InvalidSessionFault(message="Cannot store a session without a token")

        record = session.copy()
        self._start_sweeper()

        async with self._lock:
            self._sessions[record.token] = record

    async def get(self, token: str) -> Session:
        if not token:
            raise SessionNotFoundFault()

        now = utcnow()
        async with self._lock:
            record = self._sessions.get(token)
            if record is None:
                raise SessionNotFoundFault()

            if record.is_expired(now):
                del self._sessions[token]
                raise SessionExpiredFault(
                    token=token,
                    expires_at=record.expires_at.isoformat(),
                )

        return record.copy()

    async def update(self, session: Session) -> None:
        if session is None or not session.token:
            raise InvalidSessionFault(message="Cannot update a session without a token")

        record = session.copy()
        async with self._lock:
            if record.token not in self._sessions:
                raise SessionNotFoundFault()
            self._sessions[record.token] = record

    async def update_activity(
        self,
        token: str,
        last_activity_at: datetime,
        expires_at: Optional[datetime] = None,
    ) -> None:
        async with self._lock:
            record = self._sessions.get(token)
            if record is None:
                raise SessionNotFoundFault()
            record.last_activity_at = last_activity_at
            if expires_at is not None:
                record.expires_at = expires_at

    async def delete(self, token: str) -> None:
        async with self._lock:
            self._sessions.pop(token, None)

    async def delete_expired(self) -> int:
        now = utcnow()
        async with self._lock:
            expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for token in expired:
                del self._sessions[token]

        if expired:
            logger.debug(f"Removed {len(expired)} expired sessions")
        return len(expired)

    async def delete_by_user_id(self, user_id: Union[str, uuid.UUID]) -> int:
        """
        Remove every session owned by a user (e.g. on password change).

        Raises:
            InvalidSessionFault: ``user_id`` is not a valid UUID
        """
        if not isinstance(user_id, uuid.UUID):
            try:
                user_id = uuid.UUID(str(user_id))
            except ValueError:
                raise InvalidSessionFault(message="Invalid user id")

        async with self._lock:
            owned = [t for t, s in self._sessions.items() if s.user_id == user_id]
            for token in owned:
                del self._sessions[token]

        return len(owned)

    # ========================================================================
    # Introspection
    # ========================================================================

    async def stats(self) -> StoreStats:
        async with self._lock:
            total = len(self._sessions)
            authenticated = sum(1 for s in self._sessions.values() if s.is_authenticated)

        return StoreStats(
            total=total,
            authenticated=authenticated,
            anonymous=total - authenticated,
        )

    def __len__(self) -> int:
        return len(self._sessions)
