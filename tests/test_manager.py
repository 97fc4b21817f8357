"""Tests for CheckpointManager."""

import asyncio
import logging
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from threadstate import (
    DEFAULT_LIST_LIMIT,
    CheckpointManager,
    MemoryCheckpointStore,
    SerializationError,
    StoreError,
    ValidationError,
)


@pytest.fixture
def manager(store):
    return CheckpointManager(store)


class TestSaveAndLoad:
    """Tests for saving and loading through the manager."""

    @pytest.mark.asyncio
    async def test_save_checkpoint(self, manager):
        """Test that save returns the stored checkpoint."""
        cp = await manager.save_checkpoint(
            "thread_1",
            {"id": "cp-1", "step": "start"},
            {"count": 1},
            metadata={"source": "test"},
        )

        assert cp.id == "cp-1"
        assert cp.thread_id == "thread_1"
        assert cp.metadata == {"source": "test"}
        assert cp.sequence >= 1

    @pytest.mark.asyncio
    async def test_descriptor_may_be_plain_id(self, manager):
        """Test that a bare string works as descriptor."""
        await manager.save_checkpoint("t1", "cp-1", {"i": 1})
        assert await manager.list_checkpoints("t1") == ["cp-1"]

    @pytest.mark.asyncio
    async def test_descriptor_without_id(self, manager):
        """Test that a descriptor without an id is rejected."""
        with pytest.raises(ValidationError):
            await manager.save_checkpoint("t1", {"step": 1}, {})

    @pytest.mark.asyncio
    async def test_load_latest(self, manager, clock):
        """Test that the latest save is loaded."""
        for i in range(1, 4):
            await manager.save_checkpoint("t1", f"cp-{i}", {"i": i})
            clock.advance(1.0)

        latest = await manager.load_checkpoint("t1")
        assert latest.id == "cp-3"
        assert await manager.load_state("t1") == {"i": 3}
        assert await manager.load_state("t1", "cp-1") == {"i": 1}

    @pytest.mark.asyncio
    async def test_load_absent(self, manager):
        """Test that missing state is None, not an error."""
        assert await manager.load_checkpoint("nope") is None
        assert await manager.load_state("nope") is None

    @pytest.mark.asyncio
    async def test_complex_state(self, manager):
        """Test checkpoint with complex serialized state."""
        state = {
            "messages": ["Hello", "World"],
            "counters": {"a": 1, "b": 2},
            "timestamp": datetime.now(),
            "seen": {1, 2},
        }

        await manager.save_checkpoint("thread_1", "cp-1", state)
        loaded = await manager.load_state("thread_1")

        assert loaded["messages"] == ["Hello", "World"]
        assert isinstance(loaded["timestamp"], datetime)
        assert loaded["seen"] == {1, 2}

    @pytest.mark.asyncio
    async def test_unserializable_state(self, manager):
        """Test that unencodable state fails before anything is stored."""
        with pytest.raises(SerializationError):
            await manager.save_checkpoint("t1", "cp-1", {"obj": object()})
        assert await manager.list_checkpoints("t1") == []

    @pytest.mark.asyncio
    async def test_unserializable_metadata(self, manager):
        """Test that unencodable metadata is rejected."""
        with pytest.raises(SerializationError):
            await manager.save_checkpoint("t1", "cp-1", {}, metadata={"obj": object()})

    @pytest.mark.asyncio
    async def test_default_ttl(self, clock):
        """Test that the manager default TTL applies when none is given."""
        manager = CheckpointManager(MemoryCheckpointStore(clock=clock), default_ttl_seconds=10)

        short = await manager.save_checkpoint("t1", "a", {})
        forever = await manager.save_checkpoint("t1", "b", {}, ttl_seconds=1000)
        assert short.ttl_seconds == 10
        assert forever.ttl_seconds == 1000

        clock.advance(11)
        assert await manager.list_checkpoints("t1") == ["b"]

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, manager, clock):
        """Test that a 1s checkpoint is gone after 1.5 simulated seconds."""
        await manager.save_checkpoint("t1", "a", {"x": 1}, ttl_seconds=1)
        clock.advance(1.5)
        assert await manager.load_checkpoint("t1") is None


class TestListing:
    """Tests for listing and metadata."""

    @pytest.mark.asyncio
    async def test_default_limit(self, manager):
        """Test the manager's default page size."""
        for i in range(DEFAULT_LIST_LIMIT + 5):
            await manager.save_checkpoint("t1", f"cp-{i:02d}", {})

        ids = await manager.list_checkpoints("t1")
        assert len(ids) == DEFAULT_LIST_LIMIT
        assert ids[-1] == f"cp-{DEFAULT_LIST_LIMIT + 4:02d}"

        assert len(await manager.list_checkpoints("t1", limit=15)) == 15

    @pytest.mark.asyncio
    async def test_list_before(self, manager):
        """Test paging backwards with the first id of the previous page."""
        for i in range(5):
            await manager.save_checkpoint("t1", f"cp-{i}", {})

        page = await manager.list_checkpoints("t1", limit=2)
        assert page == ["cp-3", "cp-4"]
        assert await manager.list_checkpoints("t1", limit=2, before=page[0]) == ["cp-1", "cp-2"]

    @pytest.mark.asyncio
    async def test_list_threads(self, manager):
        await manager.save_checkpoint("b", "cp-1", {})
        await manager.save_checkpoint("a", "cp-1", {})
        assert await manager.list_threads() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_thread_metadata(self, manager, clock):
        """Test metadata derived from the checkpoint list."""
        start = clock.now
        await manager.save_checkpoint("t1", "a", {})
        clock.advance(5)
        await manager.save_checkpoint("t1", "b", {})

        meta = await manager.get_thread_metadata("t1")
        assert meta.thread_id == "t1"
        assert meta.checkpoint_count == 2
        assert meta.first_created_at.timestamp() == pytest.approx(start)
        assert meta.last_updated_at.timestamp() == pytest.approx(start + 5)
        assert meta.last_checkpoint_id == "b"

    @pytest.mark.asyncio
    async def test_thread_metadata_absent(self, manager):
        """Test that an unknown thread has no metadata."""
        assert await manager.get_thread_metadata("nope") is None


class TestMaintenance:
    """Tests for cleanup, TTL extension and deletion."""

    @pytest.mark.asyncio
    async def test_delete_thread(self, manager):
        """Test deleting a thread and starting over."""
        await manager.save_checkpoint("t1", "a", {})
        assert await manager.delete_thread("t1") is True
        assert await manager.load_checkpoint("t1") is None
        assert await manager.get_thread_metadata("t1") is None
        assert await manager.delete_thread("t1") is False

    @pytest.mark.asyncio
    async def test_delete_checkpoint(self, manager):
        """Test deleting one checkpoint keeps the rest of the thread."""
        await manager.save_checkpoint("t1", "a", {"i": 1})
        await manager.save_checkpoint("t1", "b", {"i": 2})

        assert await manager.delete_checkpoint("t1", "b") is True
        assert await manager.delete_checkpoint("t1", "b") is False
        assert await manager.list_checkpoints("t1") == ["a"]
        assert await manager.load_state("t1") == {"i": 1}

    @pytest.mark.asyncio
    async def test_delete_checkpoint_invalid_id(self, manager):
        with pytest.raises(ValidationError):
            await manager.delete_checkpoint("t1", "bad id")

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, manager, clock):
        """Test cleanup pass-through."""
        await manager.save_checkpoint("t1", "old", {})
        clock.advance(100)
        await manager.save_checkpoint("t1", "new", {})

        assert await manager.cleanup_expired("t1", 50_000) == 1
        assert await manager.cleanup_expired("t1", 50_000) == 0
        assert await manager.list_checkpoints("t1") == ["new"]

    @pytest.mark.asyncio
    async def test_extend_ttl(self, manager):
        """Test TTL extension pass-through."""
        await manager.save_checkpoint("t1", "a", {}, ttl_seconds=10)
        assert await manager.extend_ttl("t1", 100) == 1
        assert (await manager.load_checkpoint("t1")).ttl_seconds == 100

    @pytest.mark.asyncio
    async def test_concurrent_saves(self, manager):
        """Test 10 concurrent saves to one thread."""
        ids = [f"cp-{i}" for i in range(10)]
        await asyncio.gather(*(manager.save_checkpoint("t1", i, {"id": i}) for i in ids))

        listed = await manager.list_checkpoints("t1", limit=10)
        assert sorted(listed) == sorted(ids)


class TestHealthAndErrors:
    """Tests for health reporting and error propagation."""

    @pytest.mark.asyncio
    async def test_health(self, manager):
        """Test health of a normally selected store."""
        status = await manager.health()
        assert status.healthy is True
        assert manager.degraded is False

    @pytest.mark.asyncio
    async def test_degraded_health(self, memory_store):
        """Test that a fallback manager reports unhealthy."""
        manager = CheckpointManager(memory_store, fallback_reason="Connection refused")

        status = await manager.health()
        assert status.healthy is False
        assert "Connection refused" in status.error
        assert status.backend == "memory"

    @pytest.mark.asyncio
    async def test_store_errors_are_logged_and_raised(self, caplog):
        """Test that store failures surface typed."""
        store = AsyncMock(spec=MemoryCheckpointStore)
        store.list.side_effect = StoreError("list", "boom")
        manager = CheckpointManager(store)

        with caplog.at_level(logging.ERROR, logger="threadstate"):
            with pytest.raises(StoreError):
                await manager.list_checkpoints("t1")

        assert any("boom" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_broken_log_handler_does_not_mask_error(self):
        """Test that a failing log filter cannot replace the original error."""

        def broken_filter(record):
            raise RuntimeError("log pipeline down")

        store = AsyncMock(spec=MemoryCheckpointStore)
        store.get.side_effect = StoreError("get", "boom")
        manager = CheckpointManager(store)

        manager_logger = logging.getLogger("threadstate.manager")
        manager_logger.addFilter(broken_filter)
        try:
            with pytest.raises(StoreError):
                await manager.load_checkpoint("t1")
        finally:
            manager_logger.removeFilter(broken_filter)
