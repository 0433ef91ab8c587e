"""
FlowRegistry: snapshot of compiled flows, addressable by id, uuid or shortcode.

The registry is a plain object owned by whoever builds it (usually the
FlowEngine) and passed to the components that need lookups. There is no
module-level cache.

Each loaded flow is stored under three keys (id, uuid and shortcode), all
pointing at the same CompiledFlow instance. Reloading a flow whose canonical
document and metadata have not changed keeps the existing instance, so
contexts bound to it keep sharing one graph.
"""

import logging
import uuid
from typing import Any

from pyrhoe.core.compiled_flow import CompiledFlow
from pyrhoe.core.errors import CompileError, NotFound
from pyrhoe.flows.compiler import compile_flow, document_checksum
from pyrhoe.flows.loader import DefinitionLoader, clean_definition
from pyrhoe.models import FlowDefinition
from pyrhoe.storage.base import FlowStore, split_identifier

logger = logging.getLogger(__name__)

__all__ = ["FlowRegistry"]

FlowIdentifier = int | str | uuid.UUID


def _unchanged(
    current: CompiledFlow, definition: FlowDefinition, document: dict[str, Any]
) -> bool:
    """True when neither the document nor the flow's stored metadata changed."""
    if current.checksum != document_checksum(document):
        return False
    return (
        current.uuid == definition.uuid
        and current.shortcode == definition.shortcode
        and current.name == definition.name
        and current.language == (definition.language or document.get("language"))
        and current.flow_type == definition.flow_type
        and current.version_number == definition.version_number
    )


class FlowRegistry:
    """Compiled flow snapshot backed by a FlowStore.

    Usage:
        registry = await FlowRegistry(store).load_all()
        flow = registry.get("welcome")
    """

    def __init__(self, store: FlowStore):
        self._store = store
        self._loader = DefinitionLoader(store)
        self._flows: dict[Any, CompiledFlow] = {}
        self.failures: dict[int, CompileError] = {}
        """Flows skipped by the last load_all(), keyed by flow id."""

    async def load_one(self, identifier: FlowIdentifier) -> CompiledFlow:
        """Compile one flow from its live revision, bypassing the snapshot.

        Raises:
            NotFound: If no flow matches or it has no live revision
            CompileError: If the live revision is malformed
        """
        definition = await self._store.get_flow(identifier)
        if definition is None:
            raise NotFound(f"Flow not found: {identifier!r}", identifier=identifier)

        document = await self._loader.load_definition(definition.id)
        return compile_flow(definition, document)

    async def load_all(self, flow_id: int | None = None) -> "FlowRegistry":
        """Compile every flow holding a live revision into the snapshot.

        A flow that fails to compile is logged and recorded in failures;
        the rest of the batch still loads.

        Args:
            flow_id: Only (re)load this flow

        Returns:
            self, for chaining
        """
        rows = await self._store.fetch_active_flows_with_live_revisions(flow_id)
        self._load_rows(rows, previous=self._by_id())
        return self

    async def refresh(self) -> "FlowRegistry":
        """Drop the snapshot and load every flow again.

        Flows whose document did not change keep their compiled instance.
        Flows that lost their live revision drop out.
        """
        previous = self._by_id()
        self._flows.clear()
        self.failures.clear()

        rows = await self._store.fetch_active_flows_with_live_revisions()
        self._load_rows(rows, previous=previous)
        return self

    def _load_rows(self, rows, previous: dict[int, CompiledFlow]) -> None:
        loaded = 0
        for definition, raw in rows:
            document = clean_definition(raw)
            current = previous.get(definition.id)
            if current is not None and _unchanged(current, definition, document):
                compiled = current
            else:
                try:
                    compiled = compile_flow(definition, document)
                except CompileError as e:
                    logger.warning(f"Skipping flow {definition.id} ({definition.shortcode}): {e}")
                    self.failures[definition.id] = e
                    continue

            self._insert(compiled)
            self.failures.pop(definition.id, None)
            loaded += 1

        logger.info(f"Loaded {loaded} flow(s), {len(self.failures)} failed to compile")

    def _by_id(self) -> dict[int, CompiledFlow]:
        return {flow.id: flow for flow in self._flows.values()}

    def get(self, identifier: FlowIdentifier) -> CompiledFlow | None:
        """Snapshot lookup by id, uuid or shortcode. Never touches the store."""
        return self._flows.get(self._key(identifier))

    async def fetch(self, identifier: FlowIdentifier) -> CompiledFlow:
        """Snapshot lookup, compiling and caching the flow on a miss."""
        compiled = self.get(identifier)
        if compiled is None:
            compiled = await self.load_one(identifier)
            self._insert(compiled)
        return compiled

    def evict(self, identifier: FlowIdentifier) -> CompiledFlow | None:
        """Remove a flow (all three keys) from the snapshot."""
        compiled = self.get(identifier)
        if compiled is not None:
            for key in map(self._key, compiled.keys):
                if self._flows.get(key) is compiled:
                    del self._flows[key]
        return compiled

    def _insert(self, compiled: CompiledFlow) -> None:
        previous = self._flows.get(compiled.id)
        if previous is not None and previous is not compiled:
            self.evict(compiled.id)
        for key in map(self._key, compiled.keys):
            self._flows[key] = compiled

    @staticmethod
    def _key(identifier: FlowIdentifier) -> Any:
        try:
            return split_identifier(identifier)[1]
        except TypeError:
            return None

    def __len__(self) -> int:
        return len({id(flow) for flow in self._flows.values()})

    def __contains__(self, identifier: object) -> bool:
        return self.get(identifier) is not None  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"FlowRegistry(flows={len(self)}, failures={len(self.failures)})"
