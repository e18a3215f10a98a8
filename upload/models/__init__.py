"""
Models Package

Data structures for queued uploads.
"""

from upload.models.upload_task import (
    QueueSnapshot,
    QueueStats,
    ResultRef,
    SourceRef,
    TaskError,
    UploadTask,
    new_task_id,
)

__all__ = [
    "QueueSnapshot",
    "QueueStats",
    "ResultRef",
    "SourceRef",
    "TaskError",
    "UploadTask",
    "new_task_id",
]
