"""
Key-Value Store Interface

Abstract interface for the durable store the upload queue persists into.
Controllers depend on this interface, not concrete implementations.

Guarantees expected from implementations: single-key atomicity only,
no transactions across keys.
"""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueStore(ABC):
    """
    Abstract base class for asynchronous key-value storage.

    This allows easy swapping between file-backed storage on the device
    and in-memory storage for testing.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """
        Read a value.

        Returns:
            Stored bytes, or None if the key does not exist

        Raises:
            StorageError: If the value cannot be read
        """

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """
        Write a value atomically (replaces any previous value).

        Raises:
            StorageError: If the value cannot be written
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Remove a key. Missing keys are ignored.

        Raises:
            StorageError: If the key cannot be removed
        """

    async def close(self) -> None:
        """Release resources (no-op by default)"""


class StorageError(Exception):
    """
    Custom exception for storage-related errors.

    Makes it easy to catch storage-specific errors:
        except StorageError as e:
            logger.error(f"Storage failed: {e}")
    """
