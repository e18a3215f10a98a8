"""
Upload Test Configuration and Fixtures

Shared fixtures for upload queue tests.
Delays are tiny and jitter is off so every test is fast and deterministic.

To use pytest:
    pip install -e ".[test]"
    pytest tests/upload/
"""

import asyncio
import random
from datetime import datetime

import pytest
import pytest_asyncio

from core.event_bus import EventBus
from storage.implementations.memory_store import MemoryKeyValueStore
from upload.config import QueueConfig
from upload.controllers.queue_manager import QueueManager
from upload.implementations.mock_transport import MockTransport
from upload.models.upload_task import SourceRef, UploadTask, new_task_id
from upload.retry_policy import RetryPolicy

TEN_MB = 10 * 1024 * 1024

# =============================================================================
# CONFIG FIXTURES
# =============================================================================


@pytest.fixture
def fast_config_values():
    """Config overrides for fast tests; tweak per test before building"""
    return {
        "max_concurrent_uploads": 1,
        "max_queue_size": 50,
        "scheduler_tick_seconds": 0.05,
        "upload_timeout_seconds": 5.0,
        "max_upload_retries": 2,
        "retry_base_delay_seconds": 0.01,
        "retry_max_delay_seconds": 0.05,
        "retry_jitter_ratio": 0.0,
        "progress_min_delta": 0.05,
        "progress_min_interval_seconds": 0.25,
    }


@pytest.fixture
def fast_config(fast_config_values):
    """QueueConfig with no file and fast timings"""
    return QueueConfig(overrides=fast_config_values)


# =============================================================================
# TRANSPORT / STORE FIXTURES
# =============================================================================


@pytest.fixture
def mock_transport():
    """
    Provide a MockTransport that succeeds instantly.

    Script failures per attempt with:
        mock_transport.queue_outcomes(ErrorClass.NETWORK, "success")
    """
    return MockTransport()


@pytest.fixture
def held_transport():
    """MockTransport whose transfers stay in flight until released"""
    return MockTransport(hold=True)


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def seeded_policy():
    """RetryPolicy with jitter and a fixed random seed"""
    return RetryPolicy(
        base_delay_seconds=2.0,
        max_delay_seconds=60.0,
        max_retries=2,
        jitter_ratio=0.2,
        rng=random.Random(42),
    )


# =============================================================================
# MANAGER FIXTURES
# =============================================================================


@pytest_asyncio.fixture
async def manager(memory_store, mock_transport, fast_config, event_bus):
    """
    Provide a QueueManager that is NOT started.

    Drive it with `await manager.tick()`, or call `await manager.start()`
    in the test. Shut down automatically.
    """
    queue_manager = QueueManager(
        store=memory_store,
        transport=mock_transport,
        config=fast_config,
        event_bus=event_bus,
    )
    yield queue_manager
    await queue_manager.shutdown()


@pytest_asyncio.fixture
async def held_manager(memory_store, held_transport, fast_config, event_bus):
    """QueueManager whose uploads stay in flight until released"""
    queue_manager = QueueManager(
        store=memory_store,
        transport=held_transport,
        config=fast_config,
        event_bus=event_bus,
    )
    yield queue_manager
    await queue_manager.shutdown()


@pytest_asyncio.fixture
async def build_manager(memory_store, fast_config_values):
    """
    Factory for QueueManagers with custom config.

    Usage:
        queue_manager = build_manager(transport, max_queue_size=2)

    Every manager built here shares memory_store unless one is passed,
    so a second build behaves like a process restart.
    """
    built = []

    def _build(transport=None, store=None, now=None, credentials_refresher=None, **overrides):
        values = dict(fast_config_values)
        values.update(overrides)
        queue_manager = QueueManager(
            store=store if store is not None else memory_store,
            transport=transport if transport is not None else MockTransport(),
            config=QueueConfig(overrides=values),
            credentials_refresher=credentials_refresher,
            now=now or datetime.now,
        )
        built.append(queue_manager)
        return queue_manager

    yield _build
    for queue_manager in built:
        await queue_manager.shutdown()


@pytest.fixture
def wait_for():
    """
    Poll a condition on the running loop.

    Usage:
        await wait_for(lambda: manager.get_task("u1", task_id).state == TaskState.FAILED)
    """

    async def _wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not reached before timeout")
            await asyncio.sleep(0.005)

    return _wait


# =============================================================================
# DATA HELPERS
# =============================================================================


@pytest.fixture
def source_ref():
    """A 10 MB source file reference"""
    return SourceRef(uri="/videos/pasta.mp4", size_bytes=TEN_MB, mime_type="video/mp4")


@pytest.fixture
def make_task():
    """
    Factory for UploadTask records.

    Usage:
        task = make_task("u1", state=TaskState.SUCCEEDED, minute=3)
    """
    counter = {"sequence": 0}

    def _make(owner_id="u1", minute=0, **fields):
        counter["sequence"] += 1
        created = datetime(2026, 1, 1, 12, minute)
        return UploadTask(
            id=fields.pop("id", new_task_id()),
            owner_id=owner_id,
            source_ref=fields.pop(
                "source_ref",
                SourceRef(uri=f"/videos/{counter['sequence']}.mp4", size_bytes=TEN_MB),
            ),
            created_at=created,
            updated_at=created,
            sequence=counter["sequence"],
            **fields,
        )

    return _make


# =============================================================================
# HELPER FIXTURES
# =============================================================================


@pytest.fixture
def event_tracker():
    """
    Provide a helper for tracking event callbacks.

    Usage:
        def test_events(manager, event_tracker):
            manager.on_queue_changed("u1", event_tracker.track)
            # ... trigger event ...
            assert event_tracker.was_called()
    """

    class EventTracker:
        def __init__(self):
            self.calls = []
            self.call_args = []

        def track(self, *args, **kwargs):
            """Record an event invocation"""
            self.calls.append({"args": args, "kwargs": kwargs})
            if args:
                self.call_args.append(args[0])

        def was_called(self) -> bool:
            return len(self.calls) > 0

        def get_call_count(self) -> int:
            return len(self.calls)

        def get_last_call(self):
            return self.call_args[-1] if self.call_args else None

        def get_all_call_args(self):
            return self.call_args

        def reset(self):
            self.calls.clear()
            self.call_args.clear()

    return EventTracker()


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Full integration tests")
    config.addinivalue_line("markers", "slow: Slow tests (use sparingly)")
