"""
Storage Test Configuration and Fixtures

This file contains pytest fixtures shared across storage tests.

To use pytest:
    pip install -e ".[test]"
    pytest tests/storage/
"""

import tempfile
from pathlib import Path

import pytest

from storage.implementations.file_store import FileKeyValueStore
from storage.implementations.memory_store import MemoryKeyValueStore

# =============================================================================
# STORE FIXTURES
# =============================================================================


@pytest.fixture
def memory_store():
    """
    Provide a fresh MemoryKeyValueStore for each test.

    Usage:
        async def test_something(memory_store):
            await memory_store.set("key", b"value")
    """
    return MemoryKeyValueStore()


@pytest.fixture
def temp_store_dir():
    """
    Provide a temporary directory for file store tests.

    Automatically cleaned up after test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def file_store(temp_store_dir):
    """Provide a FileKeyValueStore rooted in a temp directory"""
    return FileKeyValueStore(temp_store_dir)


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Full integration tests")
    config.addinivalue_line("markers", "slow: Slow tests (use sparingly)")
