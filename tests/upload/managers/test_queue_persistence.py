"""
Queue Persistence Tests

Tests cover:
1. Saving and restoring owner partitions
2. Corrupt partitions reset without touching other owners
3. Interrupted uploads restored as pending (or cancelled)
4. Queue bound and completed history trimming
5. Store failures are reported, not raised
"""

import json
from datetime import datetime

import pytest

from upload.constants import ErrorClass, TaskState
from upload.managers.queue_persistence import QueuePersistence, trim_to_limit
from upload.models.upload_task import TaskError

RESTORED_AT = datetime(2026, 1, 2, 9, 0)


@pytest.fixture
def persistence(memory_store):
    return QueuePersistence(
        memory_store,
        key_prefix="test_queue",
        max_queue_size=5,
        max_completed_history=3,
        now=lambda: RESTORED_AT,
    )


# =============================================================================
# SAVE / LOAD
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_save_and_load_preserves_fields(persistence, make_task):
    task = make_task(
        "u1",
        state=TaskState.FAILED,
        attempt=2,
        last_error=TaskError(ErrorClass.NETWORK, "socket closed"),
        next_retry_at=datetime(2026, 1, 1, 12, 5),
        metadata={"recipe_id": "r-9"},
    )

    assert await persistence.save_owner("u1", [task]) is True
    loaded = await persistence.load_owner("u1")

    assert len(loaded) == 1
    restored = loaded[0]
    assert restored.id == task.id
    assert restored.state == TaskState.FAILED
    assert restored.attempt == 2
    assert restored.last_error == task.last_error
    assert restored.next_retry_at == task.next_retry_at
    assert restored.metadata == {"recipe_id": "r-9"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_save_registers_owner_in_index(persistence, make_task, memory_store):
    await persistence.save_owner("u2", [make_task("u2")])
    await persistence.save_owner("u1", [make_task("u1")])

    assert json.loads(memory_store.raw("test_queue:owners")) == ["u1", "u2"]
    assert await persistence.load_index() == ["u1", "u2"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_missing_owner_is_empty(persistence):
    assert await persistence.load_owner("nobody") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_all_returns_every_partition(persistence, make_task):
    await persistence.save_owner("u1", [make_task("u1"), make_task("u1", minute=1)])
    await persistence.save_owner("u2", [make_task("u2")])

    fresh = QueuePersistence(persistence.store, key_prefix="test_queue")
    loaded = await fresh.load_all()

    assert {owner: len(tasks) for owner, tasks in loaded.items()} == {"u1": 2, "u2": 1}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_drop_owner_removes_partition_and_index(persistence, make_task, memory_store):
    await persistence.save_owner("u1", [make_task("u1")])
    await persistence.append_history("u1", [make_task("u1", state=TaskState.SUCCEEDED)])

    await persistence.drop_owner("u1")

    assert memory_store.raw("test_queue:tasks:u1") is None
    assert memory_store.raw("test_queue:history:u1") is None
    assert await persistence.load_index() == []


# =============================================================================
# CORRUPTION
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_corrupt_partition_resets_only_that_owner(persistence, make_task, memory_store):
    """
    Test recovery from unreadable data.

    Should:
    - Return an empty queue for the corrupt owner
    - Rewrite the partition as a valid empty list
    - Leave other owners intact
    """
    await persistence.save_owner("u1", [make_task("u1")])
    await persistence.save_owner("u2", [make_task("u2")])
    memory_store.corrupt("test_queue:tasks:u1")

    loaded = await persistence.load_all()

    assert loaded["u1"] == []
    assert len(loaded["u2"]) == 1
    payload = json.loads(memory_store.raw("test_queue:tasks:u1"))
    assert payload["tasks"] == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_malformed_record_resets_partition(persistence, memory_store):
    payload = {"version": 1, "owner_id": "u1", "tasks": [{"id": "x"}]}
    await memory_store.set("test_queue:tasks:u1", json.dumps(payload).encode())

    assert await persistence.load_owner("u1") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_version_resets_partition(persistence, memory_store):
    payload = {"version": 99, "owner_id": "u1", "tasks": []}
    await memory_store.set("test_queue:tasks:u1", json.dumps(payload).encode())

    assert await persistence.load_owner("u1") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_foreign_owner_record_is_dropped(persistence, make_task, memory_store):
    own = make_task("u1")
    foreign = make_task("u2")
    data = QueuePersistence.encode("u1", [own, foreign])
    await memory_store.set("test_queue:tasks:u1", data)

    loaded = await persistence.load_owner("u1")

    assert [task.id for task in loaded] == [own.id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_corrupt_index_resets_to_empty(persistence, memory_store):
    memory_store.corrupt("test_queue:owners")

    assert await persistence.load_index() == []
    assert json.loads(memory_store.raw("test_queue:owners")) == []


# =============================================================================
# RESTORE SEMANTICS
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_interrupted_upload_restored_as_pending(persistence, make_task):
    task = make_task("u1", state=TaskState.UPLOADING, attempt=1, progress_fraction=0.4)
    await persistence.save_owner("u1", [task])

    restored = (await persistence.load_owner("u1"))[0]

    assert restored.state == TaskState.PENDING
    assert restored.attempt == 1  # not rolled back
    assert restored.progress_fraction == 0.0
    assert restored.updated_at == RESTORED_AT


@pytest.mark.unit
@pytest.mark.asyncio
async def test_interrupted_upload_with_pending_cancel_restored_cancelled(
    persistence,
    make_task,
):
    task = make_task("u1", state=TaskState.UPLOADING, attempt=1, cancel_requested=True)
    await persistence.save_owner("u1", [task])

    restored = (await persistence.load_owner("u1"))[0]

    assert restored.state == TaskState.CANCELLED
    assert restored.completed_at == RESTORED_AT


@pytest.mark.unit
@pytest.mark.asyncio
async def test_restore_rewrites_partition(persistence, make_task):
    await persistence.save_owner("u1", [make_task("u1", state=TaskState.UPLOADING)])
    await persistence.load_owner("u1")

    fresh = QueuePersistence(persistence.store, key_prefix="test_queue")
    reloaded = await fresh.load_owner("u1")

    assert reloaded[0].state == TaskState.PENDING


@pytest.mark.unit
@pytest.mark.asyncio
async def test_restore_trims_oldest_terminal_tasks(persistence, make_task):
    tasks = [make_task("u1", minute=m, state=TaskState.SUCCEEDED) for m in range(3)]
    tasks += [make_task("u1", minute=10 + m) for m in range(4)]
    await persistence.save_owner("u1", tasks)

    loaded = await persistence.load_owner("u1")

    assert len(loaded) == 5
    assert [task.id for task in loaded] == [task.id for task in tasks[2:]]


# =============================================================================
# TRIM HELPER
# =============================================================================


@pytest.mark.unit
def test_trim_never_drops_active_tasks(make_task):
    tasks = [make_task("u1", minute=m) for m in range(4)]

    kept, evicted = trim_to_limit(tasks, limit=2)

    assert evicted == []
    assert len(kept) == 4


@pytest.mark.unit
def test_trim_keeps_failed_awaiting_retry(make_task):
    waiting = make_task("u1", minute=0, state=TaskState.FAILED)
    exhausted = make_task("u1", minute=1, state=TaskState.FAILED, retries_exhausted=True)
    pending = make_task("u1", minute=2)

    kept, evicted = trim_to_limit([pending, exhausted, waiting], limit=2)

    assert evicted == [exhausted]
    assert [task.id for task in kept] == [waiting.id, pending.id]


# =============================================================================
# COMPLETED HISTORY
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_history_newest_first_and_capped(persistence, make_task):
    tasks = [
        make_task(
            "u1",
            minute=m,
            state=TaskState.SUCCEEDED,
            completed_at=datetime(2026, 1, 1, 13, m),
        )
        for m in range(5)
    ]

    await persistence.append_history("u1", tasks[:2])
    await persistence.append_history("u1", tasks[2:])
    history = await persistence.load_history("u1")

    assert [task.id for task in history] == [tasks[4].id, tasks[3].id, tasks[2].id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_corrupt_history_is_cleared(persistence, memory_store):
    memory_store.corrupt("test_queue:history:u1")

    assert await persistence.load_history("u1") == []
    assert memory_store.raw("test_queue:history:u1") is None


# =============================================================================
# STORE FAILURES
# =============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_write_returns_false(persistence, make_task, memory_store):
    memory_store.fail_writes = True

    assert await persistence.save_owner("u1", [make_task("u1")]) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unencodable_partition_returns_false(persistence, make_task, caplog):
    """
    Test saving a task whose metadata JSON cannot represent.

    Should:
    - Return False and log instead of raising
    - Leave the stored partition untouched
    """
    good = make_task("u1")
    assert await persistence.save_owner("u1", [good]) is True
    broken = make_task("u1", metadata={"when": datetime(2026, 1, 1)})

    assert await persistence.save_owner("u1", [good, broken]) is False

    assert "Failed to encode queue for u1" in caplog.text
    assert [task.id for task in await persistence.load_owner("u1")] == [good.id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_history_write_is_swallowed_and_logged(
    persistence,
    make_task,
    memory_store,
    caplog,
):
    memory_store.fail_writes = True

    await persistence.append_history("u1", [make_task("u1", state=TaskState.SUCCEEDED)])

    assert "Failed to update completed history" in caplog.text
