"""
Upload Task Lifecycle

Transition table for UploadTask states.

    pending   → uploading | cancelled
    uploading → succeeded | failed | cancelled | pending (restored after restart)
    failed    → pending | cancelled
    succeeded, cancelled → (final)

A failed task with retries exhausted is terminal as well; that is a flag on
the task rather than a separate state, so the QueueManager guards it.
"""

from core.state_machine import StateMachine
from upload.constants import TaskState

TASK_TRANSITIONS = {
    TaskState.PENDING: {TaskState.UPLOADING, TaskState.CANCELLED},
    TaskState.UPLOADING: {
        TaskState.SUCCEEDED,
        TaskState.FAILED,
        TaskState.CANCELLED,
        TaskState.PENDING,
    },
    TaskState.FAILED: {TaskState.PENDING, TaskState.CANCELLED},
    TaskState.SUCCEEDED: set(),
    TaskState.CANCELLED: set(),
}


def create_task_state_machine() -> StateMachine:
    """Build the state machine used by the queue manager"""
    return StateMachine(
        TASK_TRANSITIONS,
        initial_states={TaskState.PENDING},
        name="upload_task",
    )
