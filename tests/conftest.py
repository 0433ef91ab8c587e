"""
Pytest configuration and fixtures for pyrhoe tests.

Provides reusable fixtures for storage backends and published sample flows.
"""

import os
import shutil
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from pyrhoe.executor import ContextManager
from pyrhoe.flows import FlowRegistry
from pyrhoe.storage import InMemoryFlowStore, SqliteFlowStore
from pyrhoe.storage.base import FlowStore

from flow_samples import abc_document, publish, single_node_document


def pytest_sessionfinish(session, exitstatus):
    """Force cleanup after all tests complete to prevent CI hanging."""
    # In CI environments only, force exit to prevent hanging
    if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
        os._exit(exitstatus)


# ==============================================================================
# Storage fixtures
# ==============================================================================


@pytest.fixture
async def in_memory_store() -> AsyncGenerator[InMemoryFlowStore, None]:
    """Async in-memory store fixture with automatic cleanup."""
    store = InMemoryFlowStore()
    yield store
    await store.reset()


@pytest.fixture
async def sqlite_memory_store() -> AsyncGenerator[SqliteFlowStore, None]:
    """Async SQLite in-memory store fixture with automatic cleanup."""
    store = SqliteFlowStore(":memory:")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "test.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
async def sqlite_file_store(temp_db_path: Path) -> AsyncGenerator[SqliteFlowStore, None]:
    """Async SQLite file-based store fixture with automatic cleanup."""
    store = SqliteFlowStore(str(temp_db_path))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request) -> AsyncGenerator[FlowStore, None]:
    """Every local backend, so behaviour tests run against each of them."""
    if request.param == "memory":
        backend: FlowStore = InMemoryFlowStore()
    else:
        backend = SqliteFlowStore(":memory:")
        await backend.connect()
    yield backend
    await backend.reset()
    await backend.close()


@pytest.fixture
def registry(store: FlowStore) -> FlowRegistry:
    return FlowRegistry(store)


@pytest.fixture
def manager(store: FlowStore, registry: FlowRegistry) -> ContextManager:
    return ContextManager(store, registry)


# ==============================================================================
# Sample documents
# ==============================================================================


@pytest.fixture
def abc_doc() -> dict:
    return abc_document()


@pytest.fixture
async def abc_flow(store: FlowStore, registry: FlowRegistry):
    """The A -> B -> C flow, published and compiled."""
    definition = await publish(store, "abc", abc_document())
    return await registry.fetch(definition.id)


@pytest.fixture
async def sub_flow(store: FlowStore, registry: FlowRegistry):
    """A one-node flow used as a sub-flow."""
    definition = await publish(store, "sub", single_node_document())
    return await registry.fetch(definition.id)

