"""
Upload Module

Background upload queue: durable, owner-scoped, retrying uploads of
media files with throttled progress events.

Public API:
    - QueueManager: Queue orchestrator (one per process)
    - OwnerUploadQueue: Queue bound to one signed-in user
    - SourceRef / UploadTask / QueueSnapshot: Data structures
    - TaskState / ErrorClass: Status codes
    - create_queue_manager: Factory function

Usage:
    from upload import SourceRef, create_queue_manager

    manager = create_queue_manager()
    await manager.start()

    queue = manager.for_owner("u1")
    task_id = await queue.enqueue(SourceRef("/videos/pasta.mp4", 25_000_000))
"""

from upload.config import QueueConfig
from upload.constants import ErrorClass, TaskState
from upload.controllers.owner_queue import OwnerUploadQueue
from upload.controllers.queue_manager import QueueManager
from upload.errors import (
    FileTooLarge,
    InvalidSource,
    InvalidTaskState,
    QueueFull,
    TaskNotFound,
    UploadQueueError,
)
from upload.factory import QueueManagerFactory, create_queue_manager
from upload.models.upload_task import (
    QueueSnapshot,
    QueueStats,
    ResultRef,
    SourceRef,
    TaskError,
    UploadTask,
)

# Public API
__all__ = [
    "ErrorClass",
    "FileTooLarge",
    "InvalidSource",
    "InvalidTaskState",
    "OwnerUploadQueue",
    "QueueConfig",
    "QueueFull",
    "QueueManager",
    "QueueManagerFactory",
    "QueueSnapshot",
    "QueueStats",
    "ResultRef",
    "SourceRef",
    "TaskError",
    "TaskNotFound",
    "TaskState",
    "UploadQueueError",
    "UploadTask",
    "create_queue_manager",
]
