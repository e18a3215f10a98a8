"""
Upload Task Models

Data classes representing queued uploads and owner-scoped views of the queue.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from upload.constants import (
    ACTIVE_STATES,
    FINAL_STATES,
    TASK_ID_PREFIX,
    ErrorClass,
    TaskState,
)


def new_task_id() -> str:
    """Generate an opaque unique task identifier"""
    return f"{TASK_ID_PREFIX}_{uuid4().hex}"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class SourceRef:
    """Reference to the local media file plus its declared size"""

    uri: str
    size_bytes: int
    mime_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "uri": self.uri,
            "size_bytes": self.size_bytes,
            "mime_type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceRef":
        return cls(
            uri=data["uri"],
            size_bytes=int(data["size_bytes"]),
            mime_type=data.get("mime_type"),
        )


@dataclass(frozen=True)
class TaskError:
    """Last failure classification and message"""

    error_class: ErrorClass
    message: str

    def to_dict(self) -> dict:
        return {"error_class": self.error_class.value, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict) -> "TaskError":
        return cls(
            error_class=ErrorClass(data["error_class"]),
            message=data.get("message", ""),
        )


@dataclass(frozen=True)
class ResultRef:
    """Backend-assigned identifiers for a completed upload"""

    media_url: Optional[str] = None
    record_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "media_url": self.media_url,
            "record_id": self.record_id,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResultRef":
        return cls(
            media_url=data.get("media_url"),
            record_id=data.get("record_id"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class UploadTask:
    """
    One queued upload of a single media file.

    Lifecycle:
    pending → uploading → succeeded | failed → (pending on retry)
    Any non-terminal state → cancelled.

    Only the QueueManager mutates these; everything handed out to callers
    is a copy.
    """

    # Identity
    id: str
    owner_id: str
    source_ref: SourceRef

    # Timestamps
    created_at: datetime
    updated_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None  # Latest attempt start
    completed_at: Optional[datetime] = None  # Reached a terminal state

    # Lifecycle
    state: TaskState = TaskState.PENDING
    attempt: int = 0
    sequence: int = 0  # FIFO tie-breaker for equal created_at
    progress_fraction: float = 0.0
    cancel_requested: bool = False

    # Failure / retry tracking
    last_error: Optional[TaskError] = None
    next_retry_at: Optional[datetime] = None
    retries_exhausted: bool = False
    auth_refreshed: bool = False

    # Result
    result_ref: Optional[ResultRef] = None

    # Opaque data passed through to the transport (e.g. recipe details)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        """Succeeded, cancelled, or failed with no retries left"""
        if self.state in FINAL_STATES:
            return True
        return self.state == TaskState.FAILED and self.retries_exhausted

    @property
    def is_active(self) -> bool:
        """Pending or uploading"""
        return self.state in ACTIVE_STATES

    @property
    def awaiting_retry(self) -> bool:
        """Failed with an automatic retry scheduled"""
        return self.state == TaskState.FAILED and not self.retries_exhausted

    @property
    def order_key(self) -> Tuple[datetime, int]:
        return (self.created_at, self.sequence)

    def copy(self) -> "UploadTask":
        """Detached copy safe to hand to callers"""
        return replace(self, metadata=dict(self.metadata))

    def to_dict(self) -> dict:
        """Convert to dictionary for persistence"""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "source_ref": self.source_ref.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "started_at": _format_datetime(self.started_at),
            "completed_at": _format_datetime(self.completed_at),
            "state": self.state.value,
            "attempt": self.attempt,
            "sequence": self.sequence,
            "progress_fraction": self.progress_fraction,
            "cancel_requested": self.cancel_requested,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "next_retry_at": _format_datetime(self.next_retry_at),
            "retries_exhausted": self.retries_exhausted,
            "auth_refreshed": self.auth_refreshed,
            "result_ref": self.result_ref.to_dict() if self.result_ref else None,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UploadTask":
        """
        Create UploadTask from a persisted dictionary.

        Raises:
            KeyError, ValueError, TypeError: If the record is malformed
        """
        return cls(
            id=data["id"],
            owner_id=data["owner_id"],
            source_ref=SourceRef.from_dict(data["source_ref"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            started_at=_parse_datetime(data.get("started_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
            state=TaskState(data["state"]),
            attempt=int(data.get("attempt", 0)),
            sequence=int(data.get("sequence", 0)),
            progress_fraction=float(data.get("progress_fraction", 0.0)),
            cancel_requested=bool(data.get("cancel_requested", False)),
            last_error=(
                TaskError.from_dict(data["last_error"])
                if data.get("last_error")
                else None
            ),
            next_retry_at=_parse_datetime(data.get("next_retry_at")),
            retries_exhausted=bool(data.get("retries_exhausted", False)),
            auth_refreshed=bool(data.get("auth_refreshed", False)),
            result_ref=(
                ResultRef.from_dict(data["result_ref"])
                if data.get("result_ref")
                else None
            ),
            metadata=dict(data.get("metadata") or {}),
        )

    def __repr__(self) -> str:
        """Human-readable representation"""
        return (
            f"UploadTask(id='{self.id}', owner='{self.owner_id}', "
            f"state={self.state.value}, attempt={self.attempt})"
        )


@dataclass(frozen=True)
class QueueSnapshot:
    """
    Read-only, owner-scoped view of the queue.

    Always derived from the current task set, ordered by creation time.
    """

    owner_id: str
    tasks: Tuple[UploadTask, ...] = ()

    def _count(self, state: TaskState) -> int:
        return sum(1 for task in self.tasks if task.state == state)

    @property
    def pending_count(self) -> int:
        return self._count(TaskState.PENDING)

    @property
    def active_count(self) -> int:
        return self._count(TaskState.UPLOADING)

    @property
    def failed_count(self) -> int:
        return self._count(TaskState.FAILED)

    @property
    def succeeded_count(self) -> int:
        return self._count(TaskState.SUCCEEDED)

    @property
    def cancelled_count(self) -> int:
        return self._count(TaskState.CANCELLED)

    @property
    def needs_attention(self) -> Tuple[UploadTask, ...]:
        """Failed tasks with no automatic retry left"""
        return tuple(
            task
            for task in self.tasks
            if task.state == TaskState.FAILED and task.retries_exhausted
        )

    def get(self, task_id: str) -> Optional[UploadTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self):
        return iter(self.tasks)

    def __contains__(self, task_id: object) -> bool:
        return any(task.id == task_id for task in self.tasks)


@dataclass
class QueueStats:
    """Task counts by state, for monitoring"""

    pending_count: int = 0
    uploading_count: int = 0
    succeeded_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0

    @property
    def total(self) -> int:
        return (
            self.pending_count
            + self.uploading_count
            + self.succeeded_count
            + self.failed_count
            + self.cancelled_count
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/display"""
        return {
            "pending": self.pending_count,
            "uploading": self.uploading_count,
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "cancelled": self.cancelled_count,
            "total": self.total,
        }
