"""
MemoryStore: CRUD contract, isolation, expiry sweeping and concurrency.
"""

import asyncio
import random
import uuid
from datetime import timedelta

import pytest

from saaskit.sessions import MemoryStore, Session, StoreStats
from saaskit.sessions.core import generate_token, utcnow
from saaskit.sessions.faults import (
    InvalidSessionFault,
    SessionExpiredFault,
    SessionNotFoundFault,
)


def new_session(ttl=timedelta(minutes=30), **kwargs) -> Session:
    return Session.new(generate_token(), ttl=ttl, **kwargs)


# ============================================================================
# CRUD
# ============================================================================

class TestMemoryStoreCRUD:

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        session = new_session()
        session.set("k", "v")
        await store.create(session)

        loaded = await store.get(session.token)
        assert loaded.id == session.id
        assert loaded.get("k") == ("v", True)
        assert loaded is not session

    @pytest.mark.asyncio
    async def test_create_rejects_invalid(self, store):
        with pytest.raises(InvalidSessionFault):
            await store.create(None)
        with pytest.raises(InvalidSessionFault):
            await store.create(Session(token=""))

    @pytest.mark.asyncio
    async def test_create_last_write_wins(self, store):
        first = new_session()
        second = Session.new(first.token, ttl=timedelta(minutes=30))
        await store.create(first)
        await store.create(second)
        assert (await store.get(first.token)).id == second.id

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        with pytest.raises(SessionNotFoundFault):
            await store.get("missing")
        with pytest.raises(SessionNotFoundFault):
            await store.get("")

    @pytest.mark.asyncio
    async def test_get_expired_removes_record(self, store):
        session = new_session(ttl=timedelta(seconds=-1))
        await store.create(session)

        with pytest.raises(SessionExpiredFault):
            await store.get(session.token)
        with pytest.raises(SessionNotFoundFault):
            await store.get(session.token)
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_update(self, store):
        session = new_session()
        await store.create(session)

        session.set("cart", 3)
        await store.update(session)
        assert (await store.get(session.token)).get_int("cart") == (3, True)

    @pytest.mark.asyncio
    async def test_update_errors(self, store):
        with pytest.raises(InvalidSessionFault):
            await store.update(None)
        with pytest.raises(InvalidSessionFault):
            await store.update(Session(token=""))
        with pytest.raises(SessionNotFoundFault):
            await store.update(new_session())

    @pytest.mark.asyncio
    async def test_update_activity(self, store):
        session = new_session()
        session.set("k", "v")
        await store.create(session)

        at = utcnow() + timedelta(minutes=1)
        expires_at = at + timedelta(minutes=30)
        await store.update_activity(session.token, at, expires_at)

        loaded = await store.get(session.token)
        assert loaded.last_activity_at == at
        assert loaded.expires_at == expires_at
        assert loaded.get("k") == ("v", True)

    @pytest.mark.asyncio
    async def test_update_activity_keeps_expiry_by_default(self, store):
        session = new_session()
        await store.create(session)
        await store.update_activity(session.token, utcnow())
        assert (await store.get(session.token)).expires_at == session.expires_at

    @pytest.mark.asyncio
    async def test_update_activity_missing(self, store):
        with pytest.raises(SessionNotFoundFault):
            await store.update_activity("missing", utcnow())

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store):
        session = new_session()
        await store.create(session)

        await store.delete(session.token)
        await store.delete(session.token)
        await store.delete("never-existed")

        with pytest.raises(SessionNotFoundFault):
            await store.get(session.token)


# ============================================================================
# Isolation
# ============================================================================

class TestMemoryStoreIsolation:

    @pytest.mark.asyncio
    async def test_mutating_loaded_copy(self, store):
        session = new_session()
        session.set("items", [1])
        await store.create(session)

        loaded = await store.get(session.token)
        loaded.data["items"].append(2)
        loaded.set("new", True)

        again = await store.get(session.token)
        assert again.data == {"items": [1]}

    @pytest.mark.asyncio
    async def test_mutating_original_after_create(self, store):
        session = new_session()
        session.set("items", [1])
        await store.create(session)

        session.data["items"].append(2)
        assert (await store.get(session.token)).data == {"items": [1]}

    @pytest.mark.asyncio
    async def test_mutating_after_update(self, store):
        session = new_session()
        await store.create(session)
        session.set("items", [1])
        await store.update(session)

        session.data["items"].append(2)
        assert (await store.get(session.token)).data == {"items": [1]}


# ============================================================================
# Expiry & Bulk Operations
# ============================================================================

class TestMemoryStoreSweeping:

    @pytest.mark.asyncio
    async def test_delete_expired(self, store):
        live = new_session()
        await store.create(live)
        for _ in range(3):
            await store.create(new_session(ttl=timedelta(seconds=-1)))

        assert await store.delete_expired() == 3
        assert len(store) == 1
        assert (await store.get(live.token)).id == live.id

    @pytest.mark.asyncio
    async def test_background_sweeper(self):
        store = MemoryStore(cleanup_interval=timedelta(milliseconds=20))
        try:
            await store.create(new_session(ttl=timedelta(seconds=-1)))
            for _ in range(50):
                if len(store) == 0:
                    break
                await asyncio.sleep(0.02)
            assert len(store) == 0
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_close_stops_sweeper(self):
        store = MemoryStore(cleanup_interval=timedelta(milliseconds=10))
        await store.initialize()
        task = store._sweeper_task
        assert task is not None and not task.done()

        await store.close()
        assert task.done()
        await store.close()

    @pytest.mark.asyncio
    async def test_no_sweeper_when_disabled(self, store):
        await store.initialize()
        await store.create(new_session())
        assert store._sweeper_task is None

    @pytest.mark.asyncio
    async def test_delete_by_user_id(self, store):
        user_id = uuid.uuid4()
        for _ in range(2):
            await store.create(new_session(user_id=user_id))
        other = new_session(user_id=uuid.uuid4())
        await store.create(other)
        await store.create(new_session())

        assert await store.delete_by_user_id(str(user_id)) == 2
        assert len(store) == 2
        assert (await store.get(other.token)).id == other.id

    @pytest.mark.asyncio
    async def test_delete_by_user_id_malformed(self, store):
        with pytest.raises(InvalidSessionFault):
            await store.delete_by_user_id("not-a-uuid")

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.create(new_session(user_id=uuid.uuid4()))
        await store.create(new_session())
        await store.create(new_session())

        assert await store.stats() == StoreStats(total=3, authenticated=1, anonymous=2)


# ============================================================================
# Concurrency
# ============================================================================

class TestMemoryStoreConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_stress(self, store):
        tokens = [generate_token() for _ in range(20)]
        for token in tokens:
            await store.create(Session.new(token, ttl=timedelta(minutes=30)))

        rng = random.Random(1234)

        async def worker(worker_id: int):
            for step in range(50):
                token = rng.choice(tokens)
                op = rng.randrange(5)
                try:
                    if op == 0:
                        await store.create(Session.new(token, ttl=timedelta(minutes=30)))
                    elif op == 1:
                        await store.get(token)
                    elif op == 2:
                        session = await store.get(token)
                        session.set(f"w{worker_id}", step)
                        await store.update(session)
                    elif op == 3:
                        await store.update_activity(token, utcnow())
                    else:
                        await store.delete(token)
                except SessionNotFoundFault:
                    pass
                await asyncio.sleep(0)

        await asyncio.gather(*(worker(i) for i in range(16)))

        # Every surviving record is intact and keyed by its own token
        for token, record in store._sessions.items():
            assert record.token == token
            assert isinstance(record.data, dict)
        stats = await store.stats()
        assert stats.total == len(store)

    @pytest.mark.asyncio
    async def test_update_visible_to_later_get(self, store):
        session = new_session()
        await store.create(session)

        async def bump(i: int):
            loaded = await store.get(session.token)
            loaded.set("last", i)
            await store.update(loaded)
            after = await store.get(session.token)
            assert after.get("last")[1]

        await asyncio.gather(*(bump(i) for i in range(50)))
        value, found = (await store.get(session.token)).get_int("last")
        assert found and 0 <= value < 50
