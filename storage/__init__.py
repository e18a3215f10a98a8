"""
Storage Module

Durable key-value storage for the upload queue.

Architecture mirrors the upload module:
- interfaces/: Abstract base classes (contracts)
- implementations/: Concrete implementations (file and in-memory)
"""

from storage.factory import StoreFactory, create_store
from storage.implementations.file_store import FileKeyValueStore
from storage.implementations.memory_store import MemoryKeyValueStore
from storage.interfaces.kv_store_interface import KeyValueStore, StorageError

# Public API - what users import
__all__ = [
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "StorageError",
    "StoreFactory",
    "create_store",
]
