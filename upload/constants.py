"""
Upload Constants

Type definitions for the upload queue.
Configuration values live in config/settings.py following the
"ALL config in config/settings.py" principle.
"""

from enum import Enum

# =============================================================================
# TASK STATES
# =============================================================================


class TaskState(Enum):
    """Upload task lifecycle states"""

    PENDING = "pending"  # Waiting for a concurrency slot
    UPLOADING = "uploading"  # Executor running
    SUCCEEDED = "succeeded"  # Backend accepted the media
    FAILED = "failed"  # Awaiting retry, or terminal once retries are exhausted
    CANCELLED = "cancelled"  # Stopped by its owner


# States a task can never leave
FINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.CANCELLED})

# States that hold (or wait for) a concurrency slot
ACTIVE_STATES = frozenset({TaskState.PENDING, TaskState.UPLOADING})

# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================


class ErrorClass(Enum):
    """Failure classes reported by the upload transport"""

    NETWORK = "network"  # Connectivity loss, timeouts
    SERVER_ERROR = "server_error"  # 5xx and other backend faults
    UNAUTHORIZED = "unauthorized"  # Expired or rejected credentials
    INVALID_INPUT = "invalid_input"  # Missing, unreadable or corrupt source
    CANCELLED = "cancelled"  # Transfer stopped on request


# Classes the retry policy may schedule another attempt for
RETRYABLE_ERRORS = frozenset(
    {ErrorClass.NETWORK, ErrorClass.SERVER_ERROR, ErrorClass.UNAUTHORIZED},
)

# =============================================================================
# TRANSPORT EVENTS
# =============================================================================


class TransportEvent(Enum):
    """Events an upload handle reports back to the executor"""

    PROGRESS = "progress"
    DONE = "done"
    ERROR = "error"


class OutcomeKind(Enum):
    """How a single executor run ended"""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


# =============================================================================
# IDENTIFIERS
# =============================================================================

TASK_ID_PREFIX = "upload"
