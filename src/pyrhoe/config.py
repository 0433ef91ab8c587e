"""
Environment configuration for engines and workers.

Every component also takes explicit constructor arguments and builder
methods, so nothing here is required. EngineSettings only gathers the
knobs a deployment usually injects through the environment:

    PYRHOE_STORE_URL       memory://, sqlite:///path/to/db or redis://host:port/db
    PYRHOE_NAMESPACE       key prefix for the Redis store (default "pyrhoe")
    PYRHOE_TICK_INTERVAL   worker polling interval in seconds (default 1.0)
    PYRHOE_BATCH_SIZE      max contexts woken per tick (default 100)
    PYRHOE_STALE_RETRIES   attempts for deliver_input on StaleContext (default 3)
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from pyrhoe.models import RetryPolicy
from pyrhoe.storage.base import FlowStore

logger = logging.getLogger(__name__)

__all__ = ["ConfigError", "EngineSettings", "open_store"]

ENV_PREFIX = "PYRHOE_"


class ConfigError(ValueError):
    """An environment variable holds an unusable value."""


@dataclass(frozen=True)
class EngineSettings:
    store_url: str = "memory://"
    namespace: str = "pyrhoe"
    tick_interval: float = 1.0
    batch_size: int = 100
    stale_retries: int = 3

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        """Build settings from PYRHOE_* variables, defaulting any that are unset.

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ConfigError: If a numeric variable does not parse or is not positive
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        settings = cls(
            store_url=env.get(f"{ENV_PREFIX}STORE_URL", defaults.store_url),
            namespace=env.get(f"{ENV_PREFIX}NAMESPACE", defaults.namespace),
            tick_interval=_parse(env, "TICK_INTERVAL", float, defaults.tick_interval),
            batch_size=_parse(env, "BATCH_SIZE", int, defaults.batch_size),
            stale_retries=_parse(env, "STALE_RETRIES", int, defaults.stale_retries),
        )
        logger.debug(f"Loaded settings from environment: {settings}")
        return settings

    @property
    def retry_policy(self) -> RetryPolicy:
        """Policy for retrying deliver_input after a lost race."""
        return RetryPolicy.with_max_attempts(self.stale_retries)


def _parse(env: Mapping[str, str], name: str, kind: type, default):
    raw = env.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        value = kind(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name}={raw!r} is not a valid {kind.__name__}") from e
    if value <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be positive, got {raw!r}")
    return value


async def open_store(settings: EngineSettings) -> FlowStore:
    """Build the store named by settings.store_url and connect it.

    Raises:
        ConfigError: If the URL scheme is not memory, sqlite or redis
    """
    url = settings.store_url

    if url.startswith("memory://"):
        from pyrhoe.storage.memory import InMemoryFlowStore

        store: FlowStore = InMemoryFlowStore()

    elif url.startswith("sqlite://"):
        from pyrhoe.storage.sqlite import SqliteFlowStore

        # sqlite:///relative.db, sqlite:////absolute.db, sqlite:///:memory:
        path = url[len("sqlite:///") :] if url.startswith("sqlite:///") else ""
        if not path:
            raise ConfigError(f"SQLite URL has no database path: {url!r}")
        store = SqliteFlowStore(path)
        await store.connect()

    elif url.startswith(("redis://", "rediss://", "unix://")):
        from pyrhoe.storage.redis import RedisFlowStore

        store = RedisFlowStore(url, namespace=settings.namespace)
        await store.connect()

    else:
        raise ConfigError(f"Unsupported store URL: {url!r}")

    logger.info(f"Opened {type(store).__name__} for {url}")
    return store
