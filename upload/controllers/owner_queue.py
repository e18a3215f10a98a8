"""
Owner Upload Queue

The queue as seen by one signed-in user.
Every call is bound to a single owner_id, so UI code cannot reach another
user's tasks or events by accident. release() drops the user's
subscriptions, e.g. on logout.
"""

import logging
from typing import TYPE_CHECKING, Callable, List, Optional

from core.event_bus import Subscription
from upload.models.upload_task import QueueSnapshot, QueueStats, SourceRef, UploadTask

if TYPE_CHECKING:
    from upload.controllers.queue_manager import QueueManager


class OwnerUploadQueue:
    """
    Owner-scoped facade over the QueueManager.

    Usage:
        queue = manager.for_owner("u1")
        task_id = await queue.enqueue(SourceRef("/videos/pasta.mp4", 25_000_000))
        queue.on_progress(task_id, lambda event: bar.update(event.fraction))

        # on logout
        queue.release()
    """

    def __init__(self, manager: "QueueManager", owner_id: str):
        if not owner_id:
            raise ValueError("owner_id is required")

        self.logger = logging.getLogger(__name__)
        self.manager = manager
        self.owner_id = owner_id
        self._subscriptions: List[Subscription] = []

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def enqueue(self, source_ref: SourceRef, metadata: Optional[dict] = None) -> str:
        return await self.manager.enqueue(self.owner_id, source_ref, metadata)

    async def cancel(self, task_id: str) -> None:
        await self.manager.cancel(self.owner_id, task_id)

    async def retry_now(self, task_id: str) -> None:
        await self.manager.retry_now(self.owner_id, task_id)

    async def remove(self, task_id: str) -> None:
        await self.manager.remove(self.owner_id, task_id)

    async def clear_terminal(self) -> int:
        return await self.manager.clear_terminal(self.owner_id)

    def snapshot(self) -> QueueSnapshot:
        return self.manager.get_snapshot(self.owner_id)

    def get_task(self, task_id: str) -> UploadTask:
        return self.manager.get_task(self.owner_id, task_id)

    def stats(self) -> QueueStats:
        return self.manager.get_stats(self.owner_id)

    @property
    def has_active_uploads(self) -> bool:
        return self.manager.has_active_uploads(self.owner_id)

    async def completed_history(self) -> List[UploadTask]:
        return await self.manager.get_completed_history(self.owner_id)

    async def clear_completed_history(self) -> None:
        await self.manager.clear_completed_history(self.owner_id)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def on_queue_changed(self, callback: Callable) -> Subscription:
        return self._track(self.manager.on_queue_changed(self.owner_id, callback))

    def on_progress(self, task_id: str, callback: Callable) -> Subscription:
        return self._track(self.manager.on_progress(self.owner_id, task_id, callback))

    def on_succeeded(self, task_id: str, callback: Callable) -> Subscription:
        return self._track(self.manager.on_succeeded(self.owner_id, task_id, callback))

    def on_failed(self, task_id: str, callback: Callable) -> Subscription:
        return self._track(self.manager.on_failed(self.owner_id, task_id, callback))

    def on_retry_scheduled(self, callback: Callable) -> Subscription:
        return self._track(self.manager.on_retry_scheduled(self.owner_id, callback))

    def on_cancelled(self, callback: Callable) -> Subscription:
        return self._track(self.manager.on_cancelled(self.owner_id, callback))

    @property
    def subscription_count(self) -> int:
        return sum(1 for sub in self._subscriptions if sub.active)

    def release(self) -> None:
        """Drop every subscription made through this queue"""
        count = 0
        for subscription in self._subscriptions:
            if subscription.active:
                subscription.unsubscribe()
                count += 1
        self._subscriptions.clear()
        self.logger.info(f"Released {count} subscriptions for {self.owner_id}")

    def _track(self, subscription: Subscription) -> Subscription:
        self._subscriptions.append(subscription)
        return subscription

    def __repr__(self) -> str:
        return f"OwnerUploadQueue(owner={self.owner_id})"
