"""
Tests for environment configuration and store construction.
"""

import pytest

from pyrhoe.config import ConfigError, EngineSettings, open_store
from pyrhoe.storage import InMemoryFlowStore, SqliteFlowStore


def test_defaults():
    settings = EngineSettings()

    assert settings.store_url == "memory://"
    assert settings.namespace == "pyrhoe"
    assert settings.tick_interval == 1.0
    assert settings.batch_size == 100
    assert settings.stale_retries == 3


def test_from_env_reads_prefixed_variables():
    settings = EngineSettings.from_env(
        {
            "PYRHOE_STORE_URL": "sqlite:///data/flows.db",
            "PYRHOE_NAMESPACE": "tenant-a",
            "PYRHOE_TICK_INTERVAL": "0.5",
            "PYRHOE_BATCH_SIZE": "25",
            "PYRHOE_STALE_RETRIES": "6",
            "UNRELATED": "ignored",
        }
    )

    assert settings == EngineSettings(
        store_url="sqlite:///data/flows.db",
        namespace="tenant-a",
        tick_interval=0.5,
        batch_size=25,
        stale_retries=6,
    )
    assert settings.retry_policy.max_attempts == 6


def test_from_env_blank_values_use_defaults():
    settings = EngineSettings.from_env({"PYRHOE_BATCH_SIZE": "  "})

    assert settings.batch_size == 100


def test_from_env_reads_os_environ(monkeypatch):
    monkeypatch.setenv("PYRHOE_TICK_INTERVAL", "2.5")

    assert EngineSettings.from_env().tick_interval == 2.5


@pytest.mark.parametrize(
    "name,value",
    [
        ("PYRHOE_BATCH_SIZE", "lots"),
        ("PYRHOE_BATCH_SIZE", "0"),
        ("PYRHOE_TICK_INTERVAL", "-1"),
        ("PYRHOE_STALE_RETRIES", "1.5"),
    ],
)
def test_from_env_rejects_bad_numbers(name, value):
    with pytest.raises(ConfigError, match=name):
        EngineSettings.from_env({name: value})


@pytest.mark.asyncio
async def test_open_memory_store():
    store = await open_store(EngineSettings(store_url="memory://"))

    assert isinstance(store, InMemoryFlowStore)
    await store.close()


@pytest.mark.asyncio
async def test_open_sqlite_store(temp_db_path):
    store = await open_store(EngineSettings(store_url=f"sqlite:///{temp_db_path}"))
    try:
        assert isinstance(store, SqliteFlowStore)
        assert store.db_path == str(temp_db_path)
        assert temp_db_path.exists()
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_open_sqlite_in_memory():
    store = await open_store(EngineSettings(store_url="sqlite:///:memory:"))
    try:
        assert store.db_path == ":memory:"
        assert await store.get_next_wakeup_time() is None
    finally:
        await store.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["postgres://db/flows", "sqlite://", "flows.db"])
async def test_open_store_rejects_unknown_urls(url):
    with pytest.raises(ConfigError):
        await open_store(EngineSettings(store_url=url))
