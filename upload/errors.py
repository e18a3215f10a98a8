"""
Upload Queue Errors

Validation errors raised synchronously to the caller of a queue operation.
These never enter the retry machinery; transport failures are reported
through task state and events instead (see ErrorClass).
"""

from typing import Optional


class UploadQueueError(Exception):
    """Base class for errors raised by queue operations"""


class FileTooLarge(UploadQueueError):
    """Source file exceeds the configured maximum size"""

    def __init__(self, size_bytes: int, limit_bytes: int):
        super().__init__(
            f"File too large: {size_bytes / (1024 * 1024):.1f} MB "
            f"(limit {limit_bytes / (1024 * 1024):.1f} MB)",
        )
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class InvalidSource(UploadQueueError):
    """Source reference is malformed (empty uri, negative size)"""


class TaskNotFound(UploadQueueError):
    """No task with this id exists for the requesting owner"""

    def __init__(self, task_id: str, owner_id: Optional[str] = None):
        message = f"Upload task not found: {task_id}"
        if owner_id is not None:
            message += f" (owner {owner_id})"
        super().__init__(message)
        self.task_id = task_id
        self.owner_id = owner_id


class QueueFull(UploadQueueError):
    """Owner queue is at its limit and holds no evictable (terminal) task"""

    def __init__(self, owner_id: str, limit: int):
        super().__init__(
            f"Upload queue for {owner_id} is full ({limit} active tasks). "
            f"Wait for current uploads to complete.",
        )
        self.owner_id = owner_id
        self.limit = limit


class InvalidTaskState(UploadQueueError):
    """Operation is not allowed in the task's current state"""

    def __init__(self, task_id: str, state: str, operation: str):
        super().__init__(f"Cannot {operation} task {task_id} in state '{state}'")
        self.task_id = task_id
        self.state = state
        self.operation = operation
