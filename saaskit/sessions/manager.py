"""
SaasKit Sessions - Session manager.

Central orchestrator for the session lifecycle:
- Resolving sessions from requests (transport -> store -> validation)
- Creating anonymous sessions and upgrading them on authentication
- Token rotation on privilege change
- Expiry computation shared by every write path
- Batched, non-blocking activity tracking
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union

from saaskit.cookies import CookieManager
from saaskit.faults import Fault

from .config import SessionConfig
from .core import Session, calculate_expiry, generate_token, utcnow
from .faults import (
    InvalidSessionFault,
    SessionConfigurationFault,
    SessionExpiredFault,
    SessionNotFoundFault,
    hash_token,
)
from .store import MemoryStore, SessionStore
from .transport import CookieTransport, SessionTransport

if TYPE_CHECKING:
    from saaskit.request import Request
    from saaskit.response import Response


FingerprintFunc = Callable[["Request"], str]

DEFAULT_ACTIVITY_QUEUE_SIZE = 1000


class SessionManager:
    """
    Session lifecycle manager.

    Responsibilities:
    - Get: pure read of the request's session, errors surfaced to the caller
    - Ensure: return the current session or issue a fresh anonymous one
    - Authenticate: bind a user and rotate the token (session fixation defense)
    - Refresh / Destroy: extend or end a session
    - Activity: queue last-activity updates off the request path

    A manager owns a background worker; call ``close()`` (or use it as an
    async context manager) before shutdown so queued updates are flushed.

    Example:
        >>> manager = SessionManager(cookie_manager=CookieManager([secret]))
        >>> session = await manager.ensure(request, response)
        >>> await manager.authenticate(request, response, user_id)
        >>> await manager.close()
    """

    def __init__(
        self,
        *,
        store: Optional[SessionStore] = None,
        transport: Optional[SessionTransport] = None,
        config: Optional[SessionConfig] = None,
        fingerprint_func: Optional[FingerprintFunc] = None,
        cookie_manager: Optional[CookieManager] = None,
        cookie_options: Optional[Dict[str, Any]] = None,
        activity_queue_size: int = DEFAULT_ACTIVITY_QUEUE_SIZE,
    ):
        """
        Initialize session manager.

        Args:
            store: Session store (defaults to an owned MemoryStore)
            transport: Token transport (defaults to an encrypted cookie)
            config: Timeouts and cookie settings
            fingerprint_func: Derives a client fingerprint from a request
            cookie_manager: Required when no transport is given
            cookie_options: CookieOptions overrides for the default transport
            activity_queue_size: Bound of the activity update queue

        Raises:
            SessionConfigurationFault: Neither a transport nor a cookie manager
        """
        self.config = config or SessionConfig()
        self.fingerprint_func = fingerprint_func
        self.logger = logging.getLogger("saaskit.sessions")

        if transport is None:
            if cookie_manager is None:
                raise SessionConfigurationFault(
                    message="A cookie manager is required when using the default cookie transport"
                )
            transport = CookieTransport(
                cookie_manager,
                self.config.cookie_name,
                self.config.secure_cookies,
                **(cookie_options or {}),
            )
        self.transport = transport

        self._owns_store = store is None
        self.store: SessionStore = store if store is not None else MemoryStore(
            self.config.cleanup_interval
        )

        self._activity_queue: asyncio.Queue = asyncio.Queue(maxsize=activity_queue_size)
        self._worker_task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    def from_config(cls, config: SessionConfig, **kwargs: Any) -> SessionManager:
        """Create a manager from a SessionConfig (e.g. ``SessionConfig.from_env()``)."""
        return cls(config=config, **kwargs)

    # ========================================================================
    # Lookup
    # ========================================================================

    async def get(self, request: Request) -> Session:
        """
        Resolve the request's session without creating or mutating anything.

        Raises:
            SessionNotFoundFault: No token, or no record for it
            SessionExpiredFault: Record has expired
            InvalidSessionFault: Fingerprint mismatch
        """
        token = self.transport.get_token(request)
        session = await self.store.get(token)
        self._validate(session, request)
        return session

    async def get_value(self, request: Request, key: str) -> tuple[Any, bool]:
        """
        Read a value from the current session.

        Returns ``(None, False)`` when there is no valid session.
        """
        try:
            session = await self.get(request)
        except Fault:
            return None, False
        return session.get(key)

    def _validate(self, session: Session, request: Request) -> None:
        if session.is_expired():
            raise SessionExpiredFault(
                token=session.token,
                expires_at=session.expires_at.isoformat(),
            )

        if self.fingerprint_func is not None and session.fingerprint:
            if not session.validate_fingerprint(self.fingerprint_func(request)):
                self.logger.warning(f"Fingerprint mismatch for session {session.id}")
                raise InvalidSessionFault(message="Session fingerprint mismatch")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def ensure(self, request: Request, response: Response) -> Session:
        """
        Return the current session, or create an anonymous one.

        An expired or invalid token is cleared from the client before the
        replacement is issued. If writing the new token fails, the freshly
        created record is deleted again.
        """
        try:
            session = await self.get(request)
        except SessionNotFoundFault:
            pass
        except Fault as e:
            self.logger.debug(f"Replacing unusable session: {e.code}")
            self._clear_stale_token(response)
        else:
            self.touch_if_due(session)
            return session

        session = await self._create_session(request, None)
        idle, _ = self.config.timeouts(False)
        await self._set_token_or_rollback(response, session, idle)

        self.logger.debug(f"Created anonymous session {session.id}")
        return session

    async def authenticate(
        self,
        request: Request,
        response: Response,
        user_id: Union[uuid.UUID, str],
    ) -> Session:
        """
        Bind the session to a user, rotating its token.

        An existing session keeps its id, data, fingerprint and creation time
        but is re-stored under a new token with authenticated timeouts; the
        old token stops resolving. Without a usable session a new
        authenticated one is created directly.

        Raises:
            InvalidSessionFault: ``user_id`` is not a valid UUID
        """
        user_id = self._coerce_user_id(user_id)

        try:
            session = await self.get(request)
        except (SessionNotFoundFault, SessionExpiredFault, InvalidSessionFault):
            session = await self._create_session(request, user_id)
        else:
            new_token = generate_token()
            old_token = session.token

            # Delete before create: an interruption leaves no session, never two
            await self.store.delete(old_token)

            now = utcnow()
            idle, max_lifetime = self.config.timeouts(True)
            session.token = new_token
            session.user_id = user_id
            session.expires_at = calculate_expiry(session.created_at, now, idle, max_lifetime)
            session.touch(now)

            await self.store.create(session)
            self.logger.debug(
                f"Rotated token {hash_token(old_token)} -> {hash_token(new_token)}"
            )

        idle, _ = self.config.timeouts(True)
        await self._set_token_or_rollback(response, session, idle)

        self.logger.info(f"Session {session.id} authenticated for user {user_id}")
        return session

    async def refresh(self, request: Request, response: Response) -> Session:
        """
        Extend the current session from now and re-send its token.

        Raises:
            SessionNotFoundFault / SessionExpiredFault / InvalidSessionFault:
                No valid session
        """
        session = await self.get(request)

        now = utcnow()
        idle, max_lifetime = self.config.timeouts(session.is_authenticated)
        session.expires_at = calculate_expiry(session.created_at, now, idle, max_lifetime)
        session.touch(now)

        await self.store.update(session)
        self.transport.set_token(response, session.token, idle)
        return session

    async def destroy(self, request: Request, response: Response) -> None:
        """
        End the session: delete the record (best effort) and clear the token.

        Only a failure to clear the token is raised.
        """
        try:
            token = self.transport.get_token(request)
        except Fault:
            token = ""

        if token:
            try:
                await self.store.delete(token)
            except Fault as e:
                self.logger.warning(f"Failed to delete session {hash_token(token)}: {e}")

        self.transport.clear_token(response)

    async def set(self, request: Request, response: Response, key: str, value: Any) -> None:
        """Store a value in the session, creating one if needed."""
        session = await self.ensure(request, response)
        session.set(key, value)
        await self.store.update(session)

    # ========================================================================
    # Internals
    # ========================================================================

    async def _create_session(self, request: Request, user_id: Optional[uuid.UUID]) -> Session:
        token = generate_token()
        idle, max_lifetime = self.config.timeouts(user_id is not None)
        now = utcnow()

        fingerprint = ""
        if self.fingerprint_func is not None:
            fingerprint = self.fingerprint_func(request)

        expires_at = calculate_expiry(now, now, idle, max_lifetime)
        session = Session.new(token, user_id, fingerprint, ttl=expires_at - now, now=now)

        await self.store.create(session)
        return session

    async def _set_token_or_rollback(
        self,
        response: Response,
        session: Session,
        ttl: timedelta,
    ) -> None:
        try:
            self.transport.set_token(response, session.token, ttl)
        except Exception:
            # No client can ever present this token: drop the orphan
            await self.store.delete(session.token)
            raise

    def _clear_stale_token(self, response: Response) -> None:
        try:
            self.transport.clear_token(response)
        except Fault as e:
            self.logger.debug(f"Could not clear stale token: {e}")

    @staticmethod
    def _coerce_user_id(user_id: Union[uuid.UUID, str]) -> uuid.UUID:
        if isinstance(user_id, uuid.UUID):
            return user_id
        try:
            return uuid.UUID(str(user_id))
        except ValueError:
            raise InvalidSessionFault(message="Invalid user id")

    # ========================================================================
    # Activity Tracking
    # ========================================================================

    def touch_if_due(self, session: Session) -> bool:
        """
        Queue a last-activity update if the threshold has passed.

        Never blocks: when the queue is full the update is dropped.

        Returns:
            True if an update was queued
        """
        if self._closed or session is None:
            return False

        now = utcnow()
        if now - session.last_activity_at < self.config.activity_update_threshold:
            return False

        idle, max_lifetime = self.config.timeouts(session.is_authenticated)
        expires_at = calculate_expiry(session.created_at, now, idle, max_lifetime)

        try:
            self._activity_queue.put_nowait((session.token, now, expires_at))
        except asyncio.QueueFull:
            self.logger.debug("Activity queue full, dropping update")
            return False

        self._start_worker()
        return True

    def _start_worker(self) -> None:
        if self._worker_task is not None and not self._worker_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Queued items are flushed by close()
            return
        self._worker_task = loop.create_task(self._activity_worker())

    async def _activity_worker(self) -> None:
        """Single consumer applying queued activity updates to the store."""
        while True:
            token, at, expires_at = await self._activity_queue.get()
            try:
                await self._apply_activity(token, at, expires_at)
            finally:
                self._activity_queue.task_done()

    async def _apply_activity(self, token: str, at: datetime, expires_at: datetime) -> None:
        try:
            await self.store.update_activity(token, at, expires_at)
        except SessionNotFoundFault:
            # Destroyed or rotated since it was queued
            self.logger.debug(f"Activity update skipped for {hash_token(token)}")
        except Exception as e:
            self.logger.warning(f"Activity update failed for {hash_token(token)}: {e}")

    @property
    def pending_activity_updates(self) -> int:
        return self._activity_queue.qsize()

    # ========================================================================
    # Shutdown
    # ========================================================================

    async def close(self) -> None:
        """
        Graceful shutdown.

        Stops accepting activity updates, flushes the queued ones to the
        store, stops the worker and closes the store if the manager created
        it. Idempotent.
        """
        if self._closed:
            return
        self._closed = True

        if self._worker_task is not None and not self._worker_task.done():
            await self._activity_queue.join()
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
        self._worker_task = None

        while not self._activity_queue.empty():
            token, at, expires_at = self._activity_queue.get_nowait()
            await self._apply_activity(token, at, expires_at)
            self._activity_queue.task_done()

        if self._owns_store:
            await self.store.close()

        self.logger.debug("Session manager closed")

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
