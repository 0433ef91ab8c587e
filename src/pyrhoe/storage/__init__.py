"""Storage backends for durable flow and context persistence.

Provides multiple storage implementations behind a common interface:
    - FlowStore: Abstract interface
    - SqliteFlowStore: SQLite-backed storage
    - RedisFlowStore: Redis-backed distributed storage
    - InMemoryFlowStore: In-memory storage for testing

Design: Adapter Pattern + Dependency Inversion (SOLID)
    All storage implementations adapt to the FlowStore interface.
    Clients depend on abstraction, not concrete implementations,
    enabling easy swapping between storage backends.
"""

from pyrhoe.storage.base import FlowStore, StorageError

# Lazy imports: the backends pull in their drivers (aiosqlite, redis),
# which callers using a single backend should not have to install.


def __getattr__(name: str):
    """Lazy import storage implementations."""
    if name == "InMemoryFlowStore":
        from pyrhoe.storage.memory import InMemoryFlowStore

        return InMemoryFlowStore
    elif name == "RedisFlowStore":
        from pyrhoe.storage.redis import RedisFlowStore

        return RedisFlowStore
    elif name == "SqliteFlowStore":
        from pyrhoe.storage.sqlite import SqliteFlowStore

        return SqliteFlowStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "FlowStore",
    "StorageError",
    "SqliteFlowStore",
    "RedisFlowStore",
    "InMemoryFlowStore",
]
