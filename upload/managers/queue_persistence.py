"""
Queue Persistence

Serializes upload tasks into a KeyValueStore, one partition per owner,
and restores them at startup.
Single responsibility: storage layout and recovery only.

Key layout (prefix defaults to QUEUE_KEY_PREFIX):
    <prefix>:owners          JSON list of owner ids with a partition
    <prefix>:tasks:<owner>   {"version": 1, "owner_id": ..., "tasks": [...]}
    <prefix>:history:<owner> same shape, succeeded uploads, newest first
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from config.settings import MAX_COMPLETED_HISTORY, MAX_QUEUE_SIZE, QUEUE_KEY_PREFIX
from storage.interfaces.kv_store_interface import KeyValueStore, StorageError
from upload.constants import TaskState
from upload.models.upload_task import UploadTask

FORMAT_VERSION = 1

# Anything that means "this partition cannot be decoded"
_DECODE_ERRORS = (
    UnicodeDecodeError,
    json.JSONDecodeError,
    KeyError,
    TypeError,
    ValueError,
    AttributeError,
)


def trim_to_limit(
    tasks: Sequence[UploadTask],
    limit: int,
) -> Tuple[List[UploadTask], List[UploadTask]]:
    """
    Enforce a per-owner queue bound.

    Drops the oldest terminal tasks first and never drops pending,
    uploading or retry-scheduled ones, so the result may still exceed
    the limit if everything left is active.

    Returns:
        (kept tasks in creation order, evicted tasks)
    """
    ordered = sorted(tasks, key=lambda task: task.order_key)
    evicted: List[UploadTask] = []
    excess = len(ordered) - limit
    if excess <= 0:
        return ordered, evicted

    for task in ordered:
        if excess <= 0:
            break
        if task.is_terminal:
            evicted.append(task)
            excess -= 1

    evicted_ids = {task.id for task in evicted}
    return [task for task in ordered if task.id not in evicted_ids], evicted


class QueuePersistence:
    """
    Persistence adapter for the upload queue.

    Responsibilities:
    - Write an owner's task set after every state change
    - Restore every owner's tasks at startup
    - Recover from unreadable partitions by resetting only that partition
    - Keep the completed-upload history

    Concurrency:
    - Writes to one owner's partition are serialized with an asyncio.Lock,
      so the last write issued is the last write stored
    """

    def __init__(
        self,
        store: KeyValueStore,
        key_prefix: str = QUEUE_KEY_PREFIX,
        max_queue_size: int = MAX_QUEUE_SIZE,
        max_completed_history: int = MAX_COMPLETED_HISTORY,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.key_prefix = key_prefix
        self.max_queue_size = max_queue_size
        self.max_completed_history = max_completed_history
        self._now = now

        self._owner_locks: Dict[str, asyncio.Lock] = {}
        self._index_lock: Optional[asyncio.Lock] = None
        self._known_owners: set = set()

    # =========================================================================
    # KEYS
    # =========================================================================

    @property
    def index_key(self) -> str:
        return f"{self.key_prefix}:owners"

    def tasks_key(self, owner_id: str) -> str:
        return f"{self.key_prefix}:tasks:{owner_id}"

    def history_key(self, owner_id: str) -> str:
        return f"{self.key_prefix}:history:{owner_id}"

    def _lock_for(self, owner_id: str) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = self._owner_locks[owner_id] = asyncio.Lock()
        return lock

    def _get_index_lock(self) -> asyncio.Lock:
        if self._index_lock is None:
            self._index_lock = asyncio.Lock()
        return self._index_lock

    # =========================================================================
    # ENCODING
    # =========================================================================

    @staticmethod
    def encode(owner_id: str, tasks: Iterable[UploadTask]) -> bytes:
        payload = {
            "version": FORMAT_VERSION,
            "owner_id": owner_id,
            "tasks": [task.to_dict() for task in tasks],
        }
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    def decode(self, owner_id: str, raw: bytes) -> List[UploadTask]:
        """
        Decode a partition, dropping records that belong to another owner.

        Raises:
            ValueError (or another decode error): If the payload is unreadable
        """
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict) or not isinstance(payload["tasks"], list):
            raise ValueError("Partition payload is not a task list")

        version = payload.get("version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported partition version: {version}")

        tasks: List[UploadTask] = []
        for record in payload["tasks"]:
            task = UploadTask.from_dict(record)
            if task.owner_id != owner_id:
                self.logger.warning(
                    f"Dropped task {task.id} belonging to a different owner "
                    f"({task.owner_id}) from partition {owner_id}",
                )
                continue
            tasks.append(task)
        return tasks

    # =========================================================================
    # TASK PARTITIONS
    # =========================================================================

    async def save_owner(self, owner_id: str, tasks: Iterable[UploadTask]) -> bool:
        """
        Write an owner's full task set.

        Returns:
            True if stored; False if encoding or the store failed (state
            stays in memory and the next save retries)
        """
        try:
            data = self.encode(owner_id, tasks)
        except (TypeError, ValueError) as e:
            self.logger.error(f"Failed to encode queue for {owner_id}: {e}")
            return False
        async with self._lock_for(owner_id):
            try:
                await self.store.set(self.tasks_key(owner_id), data)
            except StorageError as e:
                self.logger.error(f"Failed to persist queue for {owner_id}: {e}")
                return False

        if owner_id not in self._known_owners:
            await self._add_to_index(owner_id)
        return True

    async def load_owner(self, owner_id: str) -> List[UploadTask]:
        """
        Restore one owner's tasks.

        - Unreadable partition: logged, reset to empty, returns []
        - Interrupted uploads come back as pending (or cancelled if a cancel
          was pending)
        - Queue bound enforced, oldest terminal tasks dropped first
        """
        key = self.tasks_key(owner_id)
        try:
            raw = await self.store.get(key)
        except StorageError as e:
            self.logger.error(f"Cannot read queue for {owner_id}, resetting: {e}")
            await self._reset_partition(owner_id)
            return []

        self._known_owners.add(owner_id)
        if raw is None:
            return []

        try:
            tasks = self.decode(owner_id, raw)
        except _DECODE_ERRORS as e:
            self.logger.error(
                f"Corrupted queue data for {owner_id}, resetting partition: {e}",
            )
            await self._reset_partition(owner_id)
            return []

        changed = False
        for task in tasks:
            changed = self._restore_interrupted(task) or changed

        kept, evicted = trim_to_limit(tasks, self.max_queue_size)
        if evicted:
            self.logger.warning(
                f"Dropped {len(evicted)} terminal tasks for {owner_id} "
                f"to respect the queue limit of {self.max_queue_size}",
            )
            changed = True

        if changed:
            await self.save_owner(owner_id, kept)

        self.logger.info(f"Loaded {len(kept)} queue items for {owner_id}")
        return kept

    async def load_all(self) -> Dict[str, List[UploadTask]]:
        """Restore every owner listed in the index"""
        owners = await self.load_index()
        return {owner_id: await self.load_owner(owner_id) for owner_id in owners}

    async def drop_owner(self, owner_id: str) -> None:
        """Remove an owner's partition, history and index entry"""
        async with self._lock_for(owner_id):
            await self.store.delete(self.tasks_key(owner_id))
            await self.store.delete(self.history_key(owner_id))
        async with self._get_index_lock():
            self._known_owners.discard(owner_id)
            await self._write_index()
        self.logger.info(f"Dropped persisted queue for {owner_id}")

    def _restore_interrupted(self, task: UploadTask) -> bool:
        if task.state != TaskState.UPLOADING:
            return False

        now = self._now()
        if task.cancel_requested:
            task.state = TaskState.CANCELLED
            task.completed_at = now
            reason = "cancel was pending"
        else:
            # The interrupted attempt still counts; attempt is not rolled back
            task.state = TaskState.PENDING
            reason = "upload interrupted"
        task.progress_fraction = 0.0
        task.updated_at = now
        self.logger.info(
            f"Restored {task.id} as {task.state.value} ({reason})",
        )
        return True

    async def _reset_partition(self, owner_id: str) -> None:
        try:
            await self.store.set(self.tasks_key(owner_id), self.encode(owner_id, []))
        except StorageError as e:
            self.logger.error(f"Failed to reset queue for {owner_id}: {e}")

    # =========================================================================
    # OWNER INDEX
    # =========================================================================

    async def load_index(self) -> List[str]:
        try:
            raw = await self.store.get(self.index_key)
            owners = json.loads(raw.decode("utf-8")) if raw else []
            if not isinstance(owners, list) or not all(
                isinstance(owner, str) for owner in owners
            ):
                raise ValueError("Owner index is not a list of strings")
        except (StorageError, *_DECODE_ERRORS) as e:
            self.logger.error(f"Corrupted owner index, resetting: {e}")
            owners = []
            async with self._get_index_lock():
                self._known_owners.clear()
                await self._write_index()
            return owners

        self._known_owners.update(owners)
        return owners

    async def _add_to_index(self, owner_id: str) -> None:
        async with self._get_index_lock():
            if owner_id in self._known_owners:
                return
            self._known_owners.add(owner_id)
            await self._write_index()

    async def _write_index(self) -> None:
        data = json.dumps(sorted(self._known_owners)).encode("utf-8")
        try:
            await self.store.set(self.index_key, data)
        except StorageError as e:
            self.logger.error(f"Failed to persist owner index: {e}")

    # =========================================================================
    # COMPLETED HISTORY
    # =========================================================================

    async def load_history(self, owner_id: str) -> List[UploadTask]:
        """Succeeded uploads for an owner, newest first"""
        try:
            raw = await self.store.get(self.history_key(owner_id))
            return self.decode(owner_id, raw) if raw else []
        except (StorageError, *_DECODE_ERRORS) as e:
            self.logger.error(f"Failed to load completed history for {owner_id}: {e}")
            await self.clear_history(owner_id)
            return []

    async def append_history(self, owner_id: str, tasks: Sequence[UploadTask]) -> None:
        """Prepend succeeded tasks to the history, keeping the newest entries"""
        if not tasks:
            return
        existing = await self.load_history(owner_id)
        added = sorted(
            tasks,
            key=lambda task: task.completed_at or task.updated_at,
            reverse=True,
        )
        added_ids = {task.id for task in added}
        merged = added + [task for task in existing if task.id not in added_ids]
        merged = merged[: self.max_completed_history]

        try:
            await self.store.set(self.history_key(owner_id), self.encode(owner_id, merged))
        except (StorageError, TypeError, ValueError) as e:
            self.logger.error(f"Failed to update completed history for {owner_id}: {e}")
            return
        self.logger.info(f"Moved {len(tasks)} uploads to history for {owner_id}")

    async def clear_history(self, owner_id: str) -> None:
        try:
            await self.store.delete(self.history_key(owner_id))
        except StorageError as e:
            self.logger.error(f"Failed to clear completed history for {owner_id}: {e}")
