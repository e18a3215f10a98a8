"""
Managers Package

Specialized helpers used by the queue manager.
"""

from upload.managers.queue_persistence import QueuePersistence, trim_to_limit

__all__ = [
    "QueuePersistence",
    "trim_to_limit",
]
