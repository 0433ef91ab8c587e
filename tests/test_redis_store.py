"""
Runs the storage contract tests against a live Redis server.

Skipped unless PYRHOE_TEST_REDIS_URL points at a server, e.g.
PYRHOE_TEST_REDIS_URL=redis://localhost:6379/15 pytest -m redis
"""

import os
import uuid
from collections.abc import AsyncGenerator

import pytest

from pyrhoe.storage import RedisFlowStore
from pyrhoe.storage.base import StorageError

from test_storage import *  # noqa: F401,F403

REDIS_URL = os.getenv("PYRHOE_TEST_REDIS_URL")

pytestmark = [
    pytest.mark.redis,
    pytest.mark.skipif(not REDIS_URL, reason="PYRHOE_TEST_REDIS_URL not set"),
]


@pytest.fixture
async def store() -> AsyncGenerator[RedisFlowStore, None]:
    """Redis store in a throwaway namespace, overriding the local backends."""
    backend = RedisFlowStore(REDIS_URL, namespace=f"pyrhoe-test-{uuid.uuid4().hex[:8]}")
    await backend.connect()
    yield backend
    await backend.reset()
    await backend.close()


@pytest.mark.asyncio
async def test_store_requires_connect():
    backend = RedisFlowStore(REDIS_URL, namespace="pyrhoe-unconnected")

    with pytest.raises(StorageError):
        await backend.get_flow(1)
