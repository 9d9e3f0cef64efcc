"""
Unit tests for the flat local/global mapping store.

Tests cover:
- Bidirectional lookups
- Idempotent and overwriting store()
- Delete semantics
- Enumeration
- Validation, lifecycle and storage failures
- Concurrent writers on overlapping keys
"""

import asyncio
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor

import pytest

from bridge.evault_bridge.errors import StorageError, StoreClosedError, ValidationError
from bridge.evault_bridge.mapping.mapping_store import MappingStore


class TestMappingStore:
    """Tests for MappingStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        """Create an unopened store."""
        return MappingStore(os.path.join(data_dir, "mappings.db"), wal_mode=False)

    @pytest.mark.asyncio
    async def test_store_and_lookup_both_directions(self, store):
        """Stored pair resolves both ways."""
        await store.open()

        await store.store("post-1", "me-aaa")

        assert await store.get_global_id("post-1") == "me-aaa"
        assert await store.get_local_id("me-aaa") == "post-1"

    @pytest.mark.asyncio
    async def test_lookup_miss_returns_none(self, store):
        """Unknown ids are absent, not errors."""
        await store.open()

        assert await store.get_global_id("never-published") is None
        assert await store.get_local_id("me-unknown") is None

    @pytest.mark.asyncio
    async def test_store_same_pair_twice_is_noop(self, store):
        """Storing an identical pair keeps a single entry."""
        await store.open()

        await store.store("post-1", "me-aaa")
        first = await store.get_all_mappings()

        await store.store("post-1", "me-aaa")
        second = await store.get_all_mappings()

        assert first == second
        assert len(second) == 1

    @pytest.mark.asyncio
    async def test_store_new_global_id_overwrites(self, store):
        """Re-storing a local id replaces the old global id."""
        await store.open()

        await store.store("post-1", "me-old")
        await store.store("post-1", "me-new")

        assert await store.get_global_id("post-1") == "me-new"
        assert await store.get_local_id("me-old") is None
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_store_existing_global_id_moves_it(self, store):
        """A global id stored under a new local id leaves the old local id unmapped."""
        await store.open()

        await store.store("post-1", "me-aaa")
        await store.store("post-2", "me-aaa")

        assert await store.get_local_id("me-aaa") == "post-2"
        assert await store.get_global_id("post-1") is None
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_store_crossing_pairs_stays_one_to_one(self, store):
        """Re-pairing two existing entries removes both old pairs."""
        await store.open()

        await store.store("a", "g1")
        await store.store("b", "g2")
        await store.store("a", "g2")

        mappings = {(m.local_id, m.global_id) for m in await store.get_all_mappings()}
        assert mappings == {("a", "g2")}

    @pytest.mark.asyncio
    async def test_delete_mapping(self, store):
        """Delete removes the pair in both directions."""
        await store.open()
        await store.store("post-1", "me-aaa")

        deleted = await store.delete_mapping("post-1")

        assert deleted is True
        assert await store.get_global_id("post-1") is None
        assert await store.get_local_id("me-aaa") is None

    @pytest.mark.asyncio
    async def test_delete_missing_mapping_is_noop(self, store):
        """Deleting an unmapped id succeeds and changes nothing."""
        await store.open()
        await store.store("post-1", "me-aaa")

        deleted = await store.delete_mapping("post-404")

        assert deleted is False
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_republish_after_delete(self, store):
        """Delete then store again gives the new global id."""
        await store.open()
        await store.store("post-1", "me-v1")
        await store.delete_mapping("post-1")

        await store.store("post-1", "me-v2")

        assert await store.get_global_id("post-1") == "me-v2"

    @pytest.mark.asyncio
    async def test_get_all_mappings_complete(self, store):
        """Enumeration returns exactly the stored pairs."""
        await store.open()
        pairs = {(f"local-{i}", f"global-{i}") for i in range(25)}
        for local_id, global_id in pairs:
            await store.store(local_id, global_id)

        mappings = await store.get_all_mappings()

        assert len(mappings) == 25
        assert {(m.local_id, m.global_id) for m in mappings} == pairs
        assert all(m.created_at > 0 for m in mappings)

    @pytest.mark.asyncio
    async def test_get_all_mappings_empty(self, store):
        await store.open()
        assert await store.get_all_mappings() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "local_id,global_id",
        [("", "me-aaa"), ("post-1", ""), ("   ", "me-aaa"), (None, "me-aaa"), ("post-1", 7)],
    )
    async def test_store_rejects_invalid_ids(self, store, local_id, global_id):
        """Empty or non-string ids fail validation and write nothing."""
        await store.open()

        with pytest.raises(ValidationError) as exc_info:
            await store.store(local_id, global_id)

        assert exc_info.value.code == "VALIDATION_ERROR"
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_validation_runs_before_io(self, store):
        """Validation fails fast even on a closed store."""
        with pytest.raises(ValidationError):
            await store.get_global_id("")

    @pytest.mark.asyncio
    async def test_operations_require_open(self, store):
        """Using a store before open() is rejected."""
        with pytest.raises(StoreClosedError):
            await store.get_global_id("post-1")

    @pytest.mark.asyncio
    async def test_operations_after_close_fail(self, store):
        """No operation is valid after close()."""
        await store.open()
        await store.close()

        with pytest.raises(StoreClosedError):
            await store.store("post-1", "me-aaa")
        assert store.is_open is False

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, data_dir):
        """Mappings are durable across store instances."""
        path = os.path.join(data_dir, "mappings.db")
        async with MappingStore(path, wal_mode=False) as store:
            await store.store("post-1", "me-aaa")

        async with MappingStore(path, wal_mode=False) as reopened:
            assert await reopened.get_global_id("post-1") == "me-aaa"

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, store):
        async with store:
            assert store.is_open
        assert not store.is_open

    @pytest.mark.asyncio
    async def test_open_creates_missing_directory(self, data_dir):
        path = os.path.join(data_dir, "nested", "deeper", "mappings.db")
        async with MappingStore(path) as store:
            await store.store("post-1", "me-aaa")
        assert os.path.exists(path)

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, data_dir):
        """Underlying SQLite failures surface as StorageError."""
        path = os.path.join(data_dir, "mappings.db")
        with open(path, "wb") as f:
            f.write(b"this is not a sqlite database" * 100)

        store = MappingStore(path, wal_mode=False)
        with pytest.raises(StorageError) as exc_info:
            await store.open()

        assert exc_info.value.code == "STORAGE_ERROR"
        assert exc_info.value.path == path

    @pytest.mark.asyncio
    async def test_open_existing_only_rejects_missing_file(self, data_dir):
        path = os.path.join(data_dir, "nested", "mappings.db")
        store = MappingStore(path, wal_mode=False)

        with pytest.raises(StorageError) as exc_info:
            await store.open(create=False)

        assert exc_info.value.path == path
        assert not store.is_open
        assert not os.path.exists(os.path.dirname(path))

    @pytest.mark.asyncio
    async def test_open_existing_only_reads_existing_file(self, data_dir):
        path = os.path.join(data_dir, "mappings.db")
        async with MappingStore(path, wal_mode=False) as store:
            await store.store("post-1", "me-aaa")

        reader = MappingStore(path, wal_mode=False)
        await reader.open(create=False)
        try:
            assert await reader.get_global_id("post-1") == "me-aaa"
        finally:
            await reader.close()


class TestMappingStoreConcurrency:
    """Concurrent callers on separate connections from worker threads."""

    @pytest.fixture
    def store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = MappingStore(os.path.join(tmpdir, "mappings.db"))
            asyncio.run(store.open())
            yield store
            asyncio.run(store.close())

    def test_overlapping_stores_keep_bijection(self, store):
        """40 writers over 5 local ids leave exactly one pair per local id."""

        def write(i):
            asyncio.run(store.store(f"l{i % 5}", f"g{i}"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(write, range(40)))

        mappings = asyncio.run(store.get_all_mappings())
        assert len(mappings) == 5
        assert {m.local_id for m in mappings} == {f"l{i}" for i in range(5)}
        assert len({m.global_id for m in mappings}) == 5
        for m in mappings:
            assert asyncio.run(store.get_global_id(m.local_id)) == m.global_id
            assert asyncio.run(store.get_local_id(m.global_id)) == m.local_id

    def test_contended_global_id_has_single_owner(self, store):
        """Writers fighting over one global id leave it mapped from one local id."""

        def write(i):
            asyncio.run(store.store(f"l{i}", "g-shared"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(write, range(24)))

        mappings = asyncio.run(store.get_all_mappings())
        assert len(mappings) == 1
        owner = mappings[0].local_id
        assert asyncio.run(store.get_local_id("g-shared")) == owner
        assert all(
            asyncio.run(store.get_global_id(f"l{i}")) is None
            for i in range(24)
            if f"l{i}" != owner
        )
