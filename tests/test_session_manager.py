"""
SessionManager: lifecycle operations, token rotation, rollback, activity
tracking and shutdown.
"""

import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from saaskit.response import Response
from saaskit.sessions import (
    HeaderTransport,
    MemoryStore,
    Session,
    SessionConfig,
    SessionManager,
)
from saaskit.sessions.core import generate_token, utcnow
from saaskit.sessions.faults import (
    InvalidSessionFault,
    SessionConfigurationFault,
    SessionExpiredFault,
    SessionNotFoundFault,
)
from tests.conftest import cookie_attributes, cookie_pairs, follow_up, make_request


async def ensure_new(manager):
    """Create a session and return it with the response that carries it."""
    response = Response()
    session = await manager.ensure(make_request(), response)
    return session, response


# ============================================================================
# Construction
# ============================================================================

class TestConstruction:

    def test_requires_transport_or_cookie_manager(self):
        with pytest.raises(SessionConfigurationFault):
            SessionManager()

    def test_explicit_transport(self):
        manager = SessionManager(transport=HeaderTransport())
        assert isinstance(manager.transport, HeaderTransport)

    @pytest.mark.asyncio
    async def test_default_store_is_owned(self, cookie_manager):
        manager = SessionManager(cookie_manager=cookie_manager)
        assert isinstance(manager.store, MemoryStore)
        assert manager.store.cleanup_interval == timedelta(minutes=5)

        await manager.ensure(make_request(), Response())
        assert manager.store._sweeper_task is not None

        await manager.close()
        assert manager.store._sweeper_task is None

    def test_from_config(self, cookie_manager):
        config = SessionConfig(cookie_name="app_sid", secure_cookies=True)
        manager = SessionManager.from_config(config, cookie_manager=cookie_manager)
        assert manager.config is config
        assert manager.transport.cookie_name == "app_sid"
        assert manager.transport.options["secure"] is True

    def test_cookie_options_passed_to_transport(self, cookie_manager):
        manager = SessionManager(cookie_manager=cookie_manager, cookie_options={"domain": "example.com"})
        response = Response()
        manager.transport.set_token(response, "t", timedelta(minutes=1))
        assert cookie_attributes(response.cookies[0])["domain"] == "example.com"


# ============================================================================
# Ensure / Get
# ============================================================================

class TestEnsure:

    @pytest.mark.asyncio
    async def test_creates_anonymous_session(self, manager):
        before = utcnow()
        session, response = await ensure_new(manager)

        assert not session.is_authenticated
        assert list(cookie_pairs(response)) == ["sid"]
        assert len(response.cookies) == 1
        assert cookie_attributes(response.cookies[0])["max-age"] == "1800"
        assert before + timedelta(minutes=30) <= session.expires_at <= utcnow() + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_returns_existing_session(self, manager):
        session, response = await ensure_new(manager)

        second_response = Response()
        again = await manager.ensure(follow_up(response), second_response)
        assert again.id == session.id
        assert second_response.cookies == []

    @pytest.mark.asyncio
    async def test_replaces_expired_session(self, manager, store):
        stale = Session.new(generate_token(), ttl=timedelta(seconds=-1))
        await store.create(stale)
        staged = Response()
        manager.transport.set_token(staged, stale.token, timedelta(minutes=1))

        response = Response()
        session = await manager.ensure(follow_up(staged), response)

        assert session.id != stale.id
        # Stale cookie cleared first, then the new token set
        assert len(response.cookies) == 2
        assert cookie_attributes(response.cookies[0])["max-age"] == "0"
        assert (await manager.get(follow_up(response))).id == session.id

    @pytest.mark.asyncio
    async def test_replaces_undecryptable_cookie(self, manager):
        response = Response()
        session = await manager.ensure(make_request(cookies={"sid": "garbage"}), response)
        assert (await manager.get(follow_up(response))).id == session.id

    @pytest.mark.asyncio
    async def test_malformed_neighbour_cookie(self, manager, store):
        session, response = await ensure_new(manager)
        sid = cookie_pairs(response)["sid"]
        request = make_request(headers=[("cookie", f'prefs={{"a":1}}; sid={sid}')])

        again = await manager.ensure(request, Response())
        assert again.id == session.id
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_rollback_when_transport_fails(self, store, session_config):
        transport = MagicMock()
        transport.get_token.side_effect = SessionNotFoundFault()
        transport.set_token.side_effect = RuntimeError("write failed")
        manager = SessionManager(store=store, transport=transport, config=session_config)

        with pytest.raises(RuntimeError):
            await manager.ensure(make_request(), Response())
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_fingerprint_captured(self, store, cookie_manager, session_config):
        manager = SessionManager(
            store=store,
            config=session_config,
            cookie_manager=cookie_manager,
            fingerprint_func=lambda request: request.header("x-fp", ""),
        )
        session = await manager.ensure(make_request(headers=[("x-fp", "fp-A")]), Response())
        assert session.fingerprint == "fp-A"


class TestGet:

    @pytest.mark.asyncio
    async def test_no_token(self, manager):
        with pytest.raises(SessionNotFoundFault):
            await manager.get(make_request())

    @pytest.mark.asyncio
    async def test_unknown_token(self, manager):
        staged = Response()
        manager.transport.set_token(staged, "unknown", timedelta(minutes=1))
        with pytest.raises(SessionNotFoundFault):
            await manager.get(follow_up(staged))

    @pytest.mark.asyncio
    async def test_expired(self, manager, store):
        session = Session.new(generate_token(), ttl=timedelta(seconds=-1))
        await store.create(session)
        staged = Response()
        manager.transport.set_token(staged, session.token, timedelta(minutes=1))

        with pytest.raises(SessionExpiredFault):
            await manager.get(follow_up(staged))

    @pytest.mark.asyncio
    async def test_fingerprint_mismatch(self, store, cookie_manager, session_config):
        manager = SessionManager(
            store=store,
            config=session_config,
            cookie_manager=cookie_manager,
            fingerprint_func=lambda request: request.header("x-fp", ""),
        )
        response = Response()
        session = await manager.ensure(make_request(headers=[("x-fp", "fp-A")]), response)

        same = follow_up(response, headers=[("x-fp", "fp-A")])
        assert (await manager.get(same)).id == session.id

        other = follow_up(response, headers=[("x-fp", "fp-B")])
        with pytest.raises(InvalidSessionFault):
            await manager.get(other)

    @pytest.mark.asyncio
    async def test_get_does_not_write(self, manager):
        _, response = await ensure_new(manager)
        before = len(manager.store)
        await manager.get(follow_up(response))
        assert len(manager.store) == before


# ============================================================================
# Authenticate
# ============================================================================

class TestAuthenticate:

    @pytest.mark.asyncio
    async def test_rotates_token(self, manager):
        anon, response = await ensure_new(manager)
        anon_response = response
        user_id = uuid.uuid4()

        auth_response = Response()
        session = await manager.authenticate(follow_up(anon_response), auth_response, user_id)

        assert session.token != anon.token
        assert session.id == anon.id
        assert session.user_id == user_id
        with pytest.raises(SessionNotFoundFault):
            await manager.get(follow_up(anon_response))

        current = await manager.get(follow_up(auth_response))
        assert current.is_authenticated
        assert current.user_id == user_id

    @pytest.mark.asyncio
    async def test_keeps_data_and_creation_time(self, manager):
        response = Response()
        await manager.set(make_request(), response, "cart", [1, 2])
        anon = await manager.get(follow_up(response))

        auth_response = Response()
        session = await manager.authenticate(follow_up(response), auth_response, uuid.uuid4())
        assert session.get("cart") == ([1, 2], True)
        assert session.created_at == anon.created_at

    @pytest.mark.asyncio
    async def test_uses_authenticated_timeouts(self, manager):
        _, response = await ensure_new(manager)
        auth_response = Response()
        before = utcnow()
        session = await manager.authenticate(follow_up(response), auth_response, uuid.uuid4())

        assert session.expires_at >= before + timedelta(hours=2)
        assert session.expires_at <= session.created_at + timedelta(hours=720)
        assert cookie_attributes(auth_response.cookies[-1])["max-age"] == str(2 * 3600)

    @pytest.mark.asyncio
    async def test_without_session_creates_authenticated(self, manager):
        user_id = uuid.uuid4()
        response = Response()
        session = await manager.authenticate(make_request(), response, user_id)
        assert session.user_id == user_id
        assert (await manager.get(follow_up(response))).user_id == user_id

    @pytest.mark.asyncio
    async def test_accepts_string_user_id(self, manager):
        user_id = uuid.uuid4()
        session = await manager.authenticate(make_request(), Response(), str(user_id))
        assert session.user_id == user_id

    @pytest.mark.asyncio
    async def test_rejects_malformed_user_id(self, manager):
        with pytest.raises(InvalidSessionFault):
            await manager.authenticate(make_request(), Response(), "not-a-uuid")

    @pytest.mark.asyncio
    async def test_rollback_when_transport_fails(self, manager, store):
        _, response = await ensure_new(manager)
        request = follow_up(response)

        real_transport = manager.transport
        failing = MagicMock()
        failing.get_token.side_effect = real_transport.get_token
        failing.set_token.side_effect = RuntimeError("write failed")
        manager.transport = failing

        with pytest.raises(RuntimeError):
            await manager.authenticate(request, Response(), uuid.uuid4())
        # Old token deleted by rotation, new one rolled back: nothing left
        assert len(store) == 0


# ============================================================================
# Destroy / Set / GetValue / Refresh
# ============================================================================

class TestDestroy:

    @pytest.mark.asyncio
    async def test_destroy(self, manager):
        _, response = await ensure_new(manager)

        destroy_response = Response()
        await manager.destroy(follow_up(response), destroy_response)

        attrs = cookie_attributes(destroy_response.cookies[0])
        assert destroy_response.cookies[0].startswith("sid=;")
        assert attrs["max-age"] == "0"
        with pytest.raises(SessionNotFoundFault):
            await manager.get(follow_up(response))
        assert len(manager.store) == 0

    @pytest.mark.asyncio
    async def test_destroy_without_session(self, manager):
        response = Response()
        await manager.destroy(make_request(), response)
        assert cookie_attributes(response.cookies[0])["max-age"] == "0"

    @pytest.mark.asyncio
    async def test_clear_failure_propagates(self, manager):
        failing = MagicMock()
        failing.get_token.side_effect = SessionNotFoundFault()
        failing.clear_token.side_effect = RuntimeError("cannot clear")
        manager.transport = failing

        with pytest.raises(RuntimeError):
            await manager.destroy(make_request(), Response())


class TestValues:

    @pytest.mark.asyncio
    async def test_set_creates_session(self, manager):
        response = Response()
        await manager.set(make_request(), response, "theme", "dark")

        assert await manager.get_value(follow_up(response), "theme") == ("dark", True)
        assert await manager.get_value(follow_up(response), "missing") == (None, False)

    @pytest.mark.asyncio
    async def test_set_on_existing_session(self, manager):
        session, response = await ensure_new(manager)
        await manager.set(follow_up(response), Response(), "n", 1)
        assert (await manager.get(follow_up(response))).id == session.id
        assert await manager.get_value(follow_up(response), "n") == (1, True)

    @pytest.mark.asyncio
    async def test_get_value_without_session(self, manager):
        assert await manager.get_value(make_request(), "theme") == (None, False)


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_extends_expiry(self, manager, store):
        session, response = await ensure_new(manager)
        # Pretend the session has been idle for a while
        stored = await store.get(session.token)
        stored.expires_at = utcnow() + timedelta(minutes=1)
        await store.update(stored)

        refresh_response = Response()
        refreshed = await manager.refresh(follow_up(response), refresh_response)

        assert refreshed.expires_at > stored.expires_at
        assert (await store.get(session.token)).expires_at == refreshed.expires_at
        assert "sid" in cookie_pairs(refresh_response)

    @pytest.mark.asyncio
    async def test_refresh_capped_by_lifetime(self, manager, store):
        session, response = await ensure_new(manager)
        stored = await store.get(session.token)
        stored.created_at = utcnow() - timedelta(hours=23, minutes=50)
        await store.update(stored)

        refreshed = await manager.refresh(follow_up(response), Response())
        assert refreshed.expires_at == stored.created_at + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_refresh_without_session(self, manager):
        with pytest.raises(SessionNotFoundFault):
            await manager.refresh(make_request(), Response())


# ============================================================================
# Activity Tracking & Shutdown
# ============================================================================

class TestActivity:

    @pytest.mark.asyncio
    async def test_not_due(self, manager):
        session, _ = await ensure_new(manager)
        assert manager.touch_if_due(session) is False

    @pytest.mark.asyncio
    async def test_due_update_is_applied(self, store, cookie_manager):
        config = SessionConfig(cleanup_interval=timedelta(0), activity_update_threshold=timedelta(0))
        manager = SessionManager(store=store, config=config, cookie_manager=cookie_manager)
        session, _ = await ensure_new(manager)

        stored = await store.get(session.token)
        stored.last_activity_at = utcnow() - timedelta(minutes=10)
        await store.update(stored)

        assert manager.touch_if_due(stored) is True
        await manager.close()

        updated = await store.get(session.token)
        assert updated.last_activity_at > stored.last_activity_at
        assert updated.expires_at <= updated.last_activity_at + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_update_capped_by_lifetime(self, store, cookie_manager):
        config = SessionConfig(cleanup_interval=timedelta(0), activity_update_threshold=timedelta(0))
        manager = SessionManager(store=store, config=config, cookie_manager=cookie_manager)
        session, _ = await ensure_new(manager)

        stored = await store.get(session.token)
        stored.created_at = utcnow() - timedelta(hours=23, minutes=50)
        stored.last_activity_at = utcnow() - timedelta(minutes=10)
        await store.update(stored)

        assert manager.touch_if_due(stored) is True
        await manager.close()

        updated = await store.get(session.token)
        assert updated.expires_at <= stored.created_at + config.anon_max_lifetime
        assert updated.expires_at == stored.created_at + config.anon_max_lifetime

    @pytest.mark.asyncio
    async def test_ensure_queues_when_due(self, store, cookie_manager):
        config = SessionConfig(cleanup_interval=timedelta(0), activity_update_threshold=timedelta(0))
        manager = SessionManager(store=store, config=config, cookie_manager=cookie_manager)
        session, response = await ensure_new(manager)
        stored = await store.get(session.token)
        stored.last_activity_at = utcnow() - timedelta(minutes=10)
        await store.update(stored)

        await manager.ensure(follow_up(response), Response())
        await manager.close()
        assert (await store.get(session.token)).last_activity_at > stored.last_activity_at

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, store, cookie_manager):
        config = SessionConfig(cleanup_interval=timedelta(0), activity_update_threshold=timedelta(0))
        manager = SessionManager(
            store=store,
            config=config,
            cookie_manager=cookie_manager,
            activity_queue_size=1,
        )
        session, _ = await ensure_new(manager)

        # No await in between: the worker cannot drain the queue
        assert manager.touch_if_due(session) is True
        assert manager.touch_if_due(session) is False
        await manager.close()

    @pytest.mark.asyncio
    async def test_update_for_deleted_session_is_ignored(self, store, cookie_manager):
        config = SessionConfig(cleanup_interval=timedelta(0), activity_update_threshold=timedelta(0))
        manager = SessionManager(store=store, config=config, cookie_manager=cookie_manager)
        session, _ = await ensure_new(manager)

        manager.touch_if_due(session)
        await store.delete(session.token)
        await manager.close()
        assert len(store) == 0


class TestShutdown:

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, manager):
        await manager.close()
        await manager.close()

    @pytest.mark.asyncio
    async def test_no_updates_after_close(self, manager):
        session, _ = await ensure_new(manager)
        await manager.close()
        session.last_activity_at = utcnow() - timedelta(hours=1)
        assert manager.touch_if_due(session) is False

    @pytest.mark.asyncio
    async def test_close_drains_queue_without_worker(self, store, cookie_manager):
        config = SessionConfig(cleanup_interval=timedelta(0), activity_update_threshold=timedelta(0))
        manager = SessionManager(store=store, config=config, cookie_manager=cookie_manager)
        session, _ = await ensure_new(manager)

        at = utcnow()
        manager._activity_queue.put_nowait((session.token, at, at + timedelta(minutes=30)))
        assert manager.pending_activity_updates == 1

        await manager.close()
        assert manager.pending_activity_updates == 0
        assert (await store.get(session.token)).last_activity_at == at

    @pytest.mark.asyncio
    async def test_async_context_manager(self, cookie_manager):
        async with SessionManager(cookie_manager=cookie_manager) as manager:
            await manager.ensure(make_request(), Response())
            store = manager.store
        assert store._closed
