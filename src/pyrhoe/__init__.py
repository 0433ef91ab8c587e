"""
pyrhoe: conversational flow execution engine

Compiles flow-builder graphs (floweditor JSON) into immutable node graphs and
drives per-contact execution over time: suspension, scheduled wakeups,
resumption on input and nested sub-flows. State lives in a durable store, so
any process can pick up any context.

Design Pattern: Façade Pattern
This module re-exports the types a host needs. FlowEngine wires the store,
registry, context manager and scheduler together.

Example:
    ```python
    import asyncio
    from pyrhoe import FlowDefinition, FlowEngine, SqliteFlowStore

    async def main():
        store = SqliteFlowStore("flows.db")
        await store.connect()

        flow = await store.save_flow(FlowDefinition(uuid=FLOW_UUID, shortcode="welcome",
                                                    name="Welcome", language="en"))
        await store.save_revision(flow.id, builder_document)

        engine = FlowEngine(store)
        await engine.load()

        context = await engine.start_flow("welcome", contact_id=42)
        context = await engine.deliver_input(context.id, exit_choice=0)

        await engine.close()

    asyncio.run(main())
    ```
"""

# Core types
from pyrhoe.core import (
    Action,
    CompiledFlow,
    CompileError,
    DanglingReference,
    EmptyFlowError,
    Exit,
    FlowError,
    InvalidExit,
    InvalidState,
    Localization,
    Node,
    NodeIndex,
    NotFound,
    StaleContext,
)

# Configuration
from pyrhoe.config import ConfigError, EngineSettings, open_store

# Engine façade
from pyrhoe.engine import FlowEngine

# Execution
from pyrhoe.executor import ContextManager, WakeupScheduler, Worker, WorkerHandle

# Flow loading
from pyrhoe.flows import DefinitionLoader, FlowRegistry, clean_definition, compile_flow

# Models
from pyrhoe.models import (
    ContextStatus,
    ExecutionContext,
    FlowDefinition,
    FlowRevision,
    FlowType,
    RetryPolicy,
    RevisionStatus,
)

# Storage (Adapter pattern); concrete backends import their drivers lazily
from pyrhoe.storage import FlowStore, StorageError


def __getattr__(name: str):
    if name in ("InMemoryFlowStore", "SqliteFlowStore", "RedisFlowStore"):
        import pyrhoe.storage

        return getattr(pyrhoe.storage, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__version__ = "0.1.0"

__all__ = [
    # Core
    "Action",
    "CompiledFlow",
    "Exit",
    "Localization",
    "Node",
    "NodeIndex",
    # Errors
    "CompileError",
    "ConfigError",
    "DanglingReference",
    "EmptyFlowError",
    "FlowError",
    "InvalidExit",
    "InvalidState",
    "NotFound",
    "StaleContext",
    "StorageError",
    # Models
    "ContextStatus",
    "ExecutionContext",
    "FlowDefinition",
    "FlowRevision",
    "FlowType",
    "RetryPolicy",
    "RevisionStatus",
    # Flows
    "DefinitionLoader",
    "FlowRegistry",
    "clean_definition",
    "compile_flow",
    # Execution
    "ContextManager",
    "FlowEngine",
    "WakeupScheduler",
    "Worker",
    "WorkerHandle",
    # Config
    "EngineSettings",
    "open_store",
    # Storage
    "FlowStore",
    "InMemoryFlowStore",
    "RedisFlowStore",
    "SqliteFlowStore",
]
