"""
Owner Upload Queue Tests

The owner-bound facade must forward every call with its own owner_id
and drop its subscriptions on release().
"""

import pytest

from upload.constants import ErrorClass, TaskState
from upload.controllers.owner_queue import OwnerUploadQueue
from upload.errors import TaskNotFound


@pytest.mark.unit
def test_owner_is_required():
    with pytest.raises(ValueError):
        OwnerUploadQueue(object(), "")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_operations_are_bound_to_owner(held_manager, source_ref):
    alice = held_manager.for_owner("alice")
    bob = held_manager.for_owner("bob")

    task_id = await alice.enqueue(source_ref)

    assert alice.get_task(task_id).owner_id == "alice"
    assert alice.has_active_uploads is True
    assert bob.has_active_uploads is False
    assert len(bob.snapshot()) == 0
    with pytest.raises(TaskNotFound):
        bob.get_task(task_id)
    with pytest.raises(TaskNotFound):
        await bob.remove(task_id)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_remove_and_stats(held_manager, source_ref):
    queue = held_manager.for_owner("u1")
    first = await queue.enqueue(source_ref)
    second = await queue.enqueue(source_ref)

    await queue.cancel(first)
    await queue.remove(second)

    assert queue.stats().cancelled_count == 1
    assert queue.stats().total == 1
    assert await queue.clear_terminal() == 1
    assert len(queue.snapshot()) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_flow_through_owner_queue(manager, mock_transport, source_ref, event_tracker):
    """
    Test a user-facing flow.

    Should:
    - Report progress and success through owner-scoped subscriptions
    - Recover a terminal failure with retry_now
    - Move the finished upload to history
    """
    queue = manager.for_owner("u1")
    mock_transport.queue_outcomes(*[ErrorClass.NETWORK] * 3)
    task_id = await queue.enqueue(source_ref)
    failures = []
    successes = []
    queue.on_failed(task_id, failures.append)
    queue.on_succeeded(task_id, successes.append)
    queue.on_progress(task_id, event_tracker.track)
    queue.on_retry_scheduled(lambda event: None)
    queue.on_queue_changed(lambda event: None)

    await manager.start()
    assert await manager.wait_until_idle(timeout=5)
    assert len(failures) == 1

    await queue.retry_now(task_id)
    assert await manager.wait_until_idle(timeout=5)

    assert queue.get_task(task_id).state == TaskState.SUCCEEDED
    assert len(successes) == 1
    assert event_tracker.get_last_call().fraction == 1.0

    await queue.clear_terminal()
    assert [task.id for task in await queue.completed_history()] == [task_id]
    await queue.clear_completed_history()
    assert await queue.completed_history() == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_release_drops_subscriptions(held_manager, source_ref, event_tracker):
    queue = held_manager.for_owner("u1")
    task_id = await queue.enqueue(source_ref)
    queue.on_queue_changed(event_tracker.track)
    queue.on_progress(task_id, event_tracker.track)
    queue.on_cancelled(event_tracker.track)
    assert queue.subscription_count == 3

    queue.release()
    await queue.cancel(task_id)

    assert queue.subscription_count == 0
    assert event_tracker.was_called() is False
    assert repr(queue) == "OwnerUploadQueue(owner=u1)"
