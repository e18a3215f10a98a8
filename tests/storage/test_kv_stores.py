"""
Key-Value Store Tests

Tests cover:
1. Memory store basics and fault injection helpers
2. File store persistence across instances
3. Key encoding for arbitrary owner ids
4. Factory creates correct implementations
"""

from pathlib import Path

import pytest

from storage.factory import StoreFactory, create_store
from storage.implementations.file_store import FileKeyValueStore
from storage.implementations.memory_store import MemoryKeyValueStore
from storage.interfaces.kv_store_interface import StorageError

# =============================================================================
# MEMORY STORE TESTS
# =============================================================================


class TestMemoryStore:
    """Test in-memory store"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, memory_store):
        assert await memory_store.get("missing") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_get_delete(self, memory_store):
        await memory_store.set("k", b"v1")
        await memory_store.set("k", b"v2")
        assert await memory_store.get("k") == b"v2"

        await memory_store.delete("k")
        await memory_store.delete("k")  # missing keys are ignored
        assert await memory_store.get("k") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_rejects_non_bytes(self, memory_store):
        with pytest.raises(StorageError):
            await memory_store.set("k", "text")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fail_writes_raises_storage_error(self, memory_store):
        memory_store.fail_writes = True

        with pytest.raises(StorageError):
            await memory_store.set("k", b"v")
        assert memory_store.raw("k") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_operation_log_records_calls(self, memory_store):
        await memory_store.set("a", b"1")
        await memory_store.get("a")
        await memory_store.delete("a")

        assert memory_store.operation_log == ["set a", "get a", "delete a"]

    @pytest.mark.unit
    def test_corrupt_replaces_value(self):
        store = MemoryKeyValueStore({"k": b"{}"})

        store.corrupt("k")

        assert store.raw("k") != b"{}"
        assert store.keys() == ["k"]


# =============================================================================
# FILE STORE TESTS
# =============================================================================


class TestFileStore:
    """Test filesystem-backed store"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_values_survive_a_new_instance(self, temp_store_dir):
        """
        Test durability.

        Should:
        - Write through to disk
        - Be readable by a second store on the same directory
        """
        await FileKeyValueStore(temp_store_dir).set("upload_queue:owners", b'["u1"]')

        reopened = FileKeyValueStore(temp_store_dir)

        assert await reopened.get("upload_queue:owners") == b'["u1"]'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_keys_with_separators_map_to_single_files(self, file_store):
        key = "upload_queue:tasks:user/with:odd chars"
        await file_store.set(key, b"data")

        files = list(file_store.base_dir.iterdir())

        assert len(files) == 1
        assert files[0].parent == file_store.base_dir
        assert file_store.keys() == [key]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, file_store):
        await file_store.set("k", b"one")
        await file_store.set("k", b"two")

        assert await file_store.get("k") == b"two"
        assert [p.suffix for p in file_store.base_dir.iterdir()] == [".dat"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete(self, file_store):
        await file_store.set("k", b"v")

        await file_store.delete("k")
        await file_store.delete("k")

        assert await file_store.get("k") is None

    @pytest.mark.unit
    def test_unusable_directory_raises(self, temp_store_dir):
        blocker = temp_store_dir / "not_a_dir"
        blocker.write_text("x")

        with pytest.raises(StorageError):
            FileKeyValueStore(blocker / "store")


# =============================================================================
# FACTORY TESTS
# =============================================================================


class TestStoreFactory:
    """Test store factory"""

    @pytest.mark.unit
    def test_memory_mode(self):
        assert isinstance(StoreFactory.create_store(mode="memory"), MemoryKeyValueStore)

    @pytest.mark.unit
    def test_file_mode(self, temp_store_dir):
        store = StoreFactory.create_store(mode="file", base_dir=temp_store_dir)

        assert isinstance(store, FileKeyValueStore)
        assert store.base_dir == temp_store_dir

    @pytest.mark.unit
    def test_auto_falls_back_to_memory(self, temp_store_dir):
        blocker = temp_store_dir / "file"
        blocker.write_text("x")

        store = StoreFactory.create_store(mode="auto", base_dir=blocker / "sub")

        assert isinstance(store, MemoryKeyValueStore)

    @pytest.mark.unit
    def test_create_store_force_memory(self):
        assert isinstance(create_store(force_memory=True), MemoryKeyValueStore)

    @pytest.mark.unit
    def test_create_store_uses_directory(self, temp_store_dir):
        store = create_store(base_dir=Path(temp_store_dir))

        assert isinstance(store, FileKeyValueStore)
