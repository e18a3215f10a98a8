"""
Memory Store Implementation

In-memory key-value store for testing without the filesystem.
Values survive as long as the instance does, so a second QueueManager built
on the same store behaves like a process restart.
"""

import logging
from typing import Dict, List, Optional

from storage.interfaces.kv_store_interface import KeyValueStore, StorageError


class MemoryKeyValueStore(KeyValueStore):
    """
    Mock key-value store.

    Extras for tests:
    - operation_log: every get/set/delete in order
    - corrupt(key): replace a value with unreadable bytes
    - fail_writes: make set() raise StorageError
    """

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self.logger = logging.getLogger(__name__)
        self._data: Dict[str, bytes] = dict(initial or {})
        self.fail_writes = False

        # Track operations for test verification
        self.operation_log: List[str] = []

        self.logger.info("[MOCK] Key-value store initialized (in memory)")

    def _log_operation(self, operation: str) -> None:
        self.operation_log.append(operation)
        self.logger.debug(f"[MOCK] {operation}")

    async def get(self, key: str) -> Optional[bytes]:
        self._log_operation(f"get {key}")
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._log_operation(f"set {key}")
        if self.fail_writes:
            raise StorageError(f"Simulated write failure for {key}")
        if not isinstance(value, (bytes, bytearray)):
            raise StorageError(f"Value for {key} must be bytes")
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._log_operation(f"delete {key}")
        self._data.pop(key, None)

    # =========================================================================
    # TEST HELPERS
    # =========================================================================

    def corrupt(self, key: str, garbage: bytes = b"\x00{not json") -> None:
        """Overwrite a key with unreadable data"""
        self._data[key] = garbage

    def keys(self) -> List[str]:
        return sorted(self._data)

    def raw(self, key: str) -> Optional[bytes]:
        """Peek at a value without logging an operation"""
        return self._data.get(key)
