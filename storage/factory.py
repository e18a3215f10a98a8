"""
Storage Factory

Factory pattern for creating key-value store implementations.
"""

import logging
from pathlib import Path
from typing import Literal, Optional

from storage.implementations.file_store import FileKeyValueStore
from storage.implementations.memory_store import MemoryKeyValueStore
from storage.interfaces.kv_store_interface import KeyValueStore, StorageError

# Type alias for better type hints
StoreMode = Literal["auto", "file", "memory"]


class StoreFactory:
    """
    Factory for creating KeyValueStore implementations.

    Usage:
        # Auto-detect (file store, memory if the directory is unusable)
        store = StoreFactory.create_store()

        # Force memory mode (useful for testing)
        store = StoreFactory.create_store(mode="memory")
    """

    _logger = logging.getLogger(__name__)

    @classmethod
    def create_store(
        cls,
        mode: StoreMode = "auto",
        base_dir: Optional[Path] = None,
    ) -> KeyValueStore:
        """
        Create a key-value store.

        Args:
            mode: "auto" (file, falling back to memory), "file" (force
                file), "memory" (force in-memory)
            base_dir: Directory for the file store (None = QUEUE_STORE_PATH)

        Returns:
            KeyValueStore implementation

        Raises:
            StorageError: If mode="file" and the directory is unusable
        """
        if mode == "memory":
            cls._logger.info("Creating Memory Store (forced)")
            return MemoryKeyValueStore()

        if mode == "file":
            cls._logger.info("Creating File Store (forced)")
            return FileKeyValueStore(base_dir)

        # mode == "auto" - queue state is only durable on disk, so say so loudly
        try:
            store = FileKeyValueStore(base_dir)
            cls._logger.info("Creating File Store (auto-detected)")
            return store
        except StorageError as e:
            cls._logger.warning(
                f"File store not available ({e}), using Memory Store. "
                f"Queued uploads will not survive a restart.",
            )
            return MemoryKeyValueStore()


# Convenience function for quick creation
def create_store(
    force_memory: bool = False,
    base_dir: Optional[Path] = None,
) -> KeyValueStore:
    """
    Quick store creation with simple memory override.

    Example:
        # Normal usage
        store = create_store()

        # Testing
        store = create_store(force_memory=True)
    """
    mode = "memory" if force_memory else "auto"
    return StoreFactory.create_store(mode=mode, base_dir=base_dir)
