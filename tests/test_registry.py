import asyncio

import pytest

from streams.exceptions import PersistenceError
from streams.jobs import ActiveStream, Status
from streams.registry import StreamRegistry

from .conftest import make_spec


class TestStreamRegistry:
    @pytest.mark.asyncio
    async def test_reserve_then_commit(self, store):
        registry = StreamRegistry(store)
        assert await registry.try_reserve("k1")
        assert "k1" in registry
        assert registry.lookup("k1") is None  # placeholder is not a handle

        handle = ActiveStream(spec=make_spec("k1"))
        registry.commit("k1", handle)
        assert registry.lookup("k1") is handle
        assert registry.handles() == [handle]

    @pytest.mark.asyncio
    async def test_concurrent_reservations_admit_one(self, store):
        registry = StreamRegistry(store)
        results = await asyncio.gather(*(registry.try_reserve("k1") for _ in range(5)))
        assert results.count(True) == 1
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_persisted_streaming_record_blocks_key(self, store):
        record_id = await store.create(make_spec("k1"), is_streaming=True, status=Status.LIVE)
        registry = StreamRegistry(store)

        assert not await registry.try_reserve("k1")
        assert "k1" not in registry
        # recovery re-arming the row that holds the key is not a conflict
        assert await registry.try_reserve("k1", record_id=record_id)

    @pytest.mark.asyncio
    async def test_history_record_does_not_block_key(self, store):
        await store.create(make_spec("k1"), is_streaming=False, status=Status.STOPPED)
        registry = StreamRegistry(store)
        assert await registry.try_reserve("k1")

    @pytest.mark.asyncio
    async def test_store_failure_drops_placeholder(self, store):
        store.fail_on.add("find_by_key")
        registry = StreamRegistry(store)
        with pytest.raises(PersistenceError):
            await registry.try_reserve("k1")
        assert "k1" not in registry

    def test_commit_requires_reservation(self, store):
        registry = StreamRegistry(store)
        with pytest.raises(RuntimeError):
            registry.commit("k1", ActiveStream(spec=make_spec("k1")))

    @pytest.mark.asyncio
    async def test_release_is_idempotent_and_handle_scoped(self, store):
        registry = StreamRegistry(store)
        await registry.try_reserve("k1")
        handle = ActiveStream(spec=make_spec("k1"))
        registry.commit("k1", handle)

        other = ActiveStream(spec=make_spec("k1"))
        assert registry.release("k1", other) is False
        assert registry.lookup("k1") is handle

        assert registry.release("k1", handle) is True
        assert registry.release("k1", handle) is False
        assert registry.release("k1") is False

    @pytest.mark.asyncio
    async def test_scheduled_and_live_views(self, store):
        registry = StreamRegistry(store)
        for key, status in (("a", Status.SCHEDULED), ("b", Status.LIVE), ("c", Status.LIVE)):
            await registry.try_reserve(key)
            registry.commit(key, ActiveStream(spec=make_spec(key), status=status))

        assert [h.key for h in registry.scheduled()] == ["a"]
        assert sorted(h.key for h in registry.live()) == ["b", "c"]
