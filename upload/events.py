"""
Upload Queue Events

Typed event payloads published on the EventBus by the QueueManager.
Every event carries `owner_id`; task events also carry `task_id`, so
subscriptions can be scoped with EventBus.subscribe(..., owner_id=..., task_id=...).
"""

from dataclasses import dataclass
from typing import Optional, Union

from upload.models.upload_task import QueueSnapshot, ResultRef, TaskError


@dataclass(frozen=True)
class QueueChanged:
    """Owner's task set changed; the snapshot is the authority"""

    owner_id: str
    snapshot: QueueSnapshot


@dataclass(frozen=True)
class ProgressUpdated:
    """Throttled, monotonic progress for one uploading task"""

    owner_id: str
    task_id: str
    fraction: float
    attempt: int


@dataclass(frozen=True)
class TaskStarted:
    owner_id: str
    task_id: str
    attempt: int


@dataclass(frozen=True)
class TaskSucceeded:
    owner_id: str
    task_id: str
    attempt: int
    result_ref: Optional[ResultRef]


@dataclass(frozen=True)
class TaskFailed:
    """
    Attempt failed.

    `terminal` is True when no automatic retry follows and the task now
    needs manual action.
    """

    owner_id: str
    task_id: str
    attempt: int
    error: TaskError
    terminal: bool


@dataclass(frozen=True)
class TaskRetryScheduled:
    owner_id: str
    task_id: str
    attempt: int
    delay_seconds: float


@dataclass(frozen=True)
class TaskCancelled:
    owner_id: str
    task_id: str


QueueEvent = Union[
    QueueChanged,
    ProgressUpdated,
    TaskStarted,
    TaskSucceeded,
    TaskFailed,
    TaskRetryScheduled,
    TaskCancelled,
]
