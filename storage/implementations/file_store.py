"""
File Store Implementation

Durable key-value store on the local filesystem, one file per key.
Uses aiofiles so reads and writes never block the event loop; writes go to
a temporary file first and are moved into place, so a crash mid-write leaves
the previous value intact.
"""

import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote, unquote
from uuid import uuid4

import aiofiles
import aiofiles.os

from config.settings import QUEUE_STORE_PATH
from storage.interfaces.kv_store_interface import KeyValueStore, StorageError

VALUE_SUFFIX = ".dat"
TEMP_SUFFIX = ".tmp"


class FileKeyValueStore(KeyValueStore):
    """
    Filesystem-backed key-value store.

    Usage:
        store = FileKeyValueStore(Path("/data/upload_queue"))
        await store.set("upload_queue:tasks:u1", b"...")
        data = await store.get("upload_queue:tasks:u1")
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Initialize file store.

        Args:
            base_dir: Directory holding one file per key (None = QUEUE_STORE_PATH)

        Raises:
            StorageError: If the directory cannot be created
        """
        self.logger = logging.getLogger(__name__)
        self.base_dir = Path(base_dir or QUEUE_STORE_PATH)

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create store directory {self.base_dir}: {e}"
            ) from e

        self.logger.info(f"File store initialized (dir: {self.base_dir})")

    def _path_for(self, key: str) -> Path:
        # Percent-encode so any owner id maps to a single safe filename
        return self.base_dir / f"{quote(key, safe='')}{VALUE_SUFFIX}"

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    async def set(self, key: str, value: bytes) -> None:
        path = self._path_for(key)
        temp_path = path.with_name(f"{path.name}.{uuid4().hex[:8]}{TEMP_SUFFIX}")
        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(value)
                await f.flush()
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            await self._discard(temp_path)
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await aiofiles.os.remove(self._path_for(key))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def keys(self) -> List[str]:
        """List stored keys (for inspection tooling)"""
        return sorted(
            unquote(path.name[: -len(VALUE_SUFFIX)])
            for path in self.base_dir.glob(f"*{VALUE_SUFFIX}")
        )

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except OSError:
            self.logger.debug(f"Temp file already gone: {path}")

    def __repr__(self) -> str:
        return f"FileKeyValueStore(dir={self.base_dir})"
