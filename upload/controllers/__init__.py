"""
Controllers Package

Queue orchestration and the owner-scoped facade.
"""

from upload.controllers.owner_queue import OwnerUploadQueue
from upload.controllers.queue_manager import QueueManager

__all__ = [
    "OwnerUploadQueue",
    "QueueManager",
]
