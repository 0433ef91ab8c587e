"""
ContextManager: lifecycle transitions of execution contexts.

The manager owns every state change of a context:

    start ──► ACTIVE ──advance──► ACTIVE (next node)
                │  ▲                └──► COMPLETED (terminal exit)
        suspend │  │ resume
                ▼  │
             SUSPENDED

    complete / cancel ──► COMPLETED (from any non-terminal state)

Design: Optimistic Concurrency
Each transition is a single store.update_context() call guarded by the
version the caller last saw. A concurrent writer makes the call raise
StaleContext and the in-memory context is left untouched, so callers can
refetch and retry. Force-completion is the one unconditional write: it
always wins and makes any racing transition go stale.

Design: Validate, then write
Every precondition (context state, exit index, destination) is checked
before the store is touched, so a rejected call never mutates anything.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pyrhoe.core.compiled_flow import CompiledFlow
from pyrhoe.core.errors import DanglingReference, EmptyFlowError, InvalidState, NotFound
from pyrhoe.flows.registry import FlowRegistry
from pyrhoe.models import ExecutionContext
from pyrhoe.storage.base import FlowStore

logger = logging.getLogger(__name__)

__all__ = ["ContextManager", "utc_now"]


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds, the precision stores keep."""
    now = datetime.now(UTC)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


class ContextManager:
    """Creates, moves and finishes execution contexts.

    All dependencies are passed explicitly: the store persists contexts,
    the registry resolves flows for sub-flow entry and for re-binding
    contexts loaded from the store.
    """

    def __init__(self, store: FlowStore, registry: FlowRegistry):
        self._store = store
        self._registry = registry

    # ========================================================================
    # Creation and loading
    # ========================================================================

    async def start(
        self,
        compiled: CompiledFlow,
        contact_id: int,
        parent_id: str | None = None,
    ) -> ExecutionContext:
        """Create and persist a context positioned at the flow's first node.

        Raises:
            EmptyFlowError: If the flow has no nodes
        """
        entry = compiled.entry_node
        if entry is None:
            raise EmptyFlowError(compiled.id)

        context = ExecutionContext(
            contact_id=contact_id,
            flow_id=compiled.id,
            flow_uuid=compiled.uuid,
            node_uuid=entry.uuid,
            parent_id=parent_id,
            uuid_map=compiled.uuid_map,
        )
        await self._store.insert_context(context)

        logger.info(
            f"Started flow {compiled.id} ({compiled.shortcode}) for contact {contact_id}: "
            f"context={context.id} parent={parent_id}"
        )
        return context

    async def load(self, context_id: str) -> ExecutionContext:
        """Fetch a context from the store and bind it to its compiled flow.

        Raises:
            NotFound: If the context or its flow does not exist
        """
        context = await self._store.get_context(context_id)
        if context is None:
            raise NotFound(f"Context not found: {context_id}", identifier=context_id)
        return await self.bind(context)

    async def bind(self, context: ExecutionContext) -> ExecutionContext:
        """Attach the compiled flow's node index to a context read from the store."""
        if context.uuid_map is None:
            compiled = await self._registry.fetch(context.flow_id)
            context.uuid_map = compiled.uuid_map
        return context

    # ========================================================================
    # Sub-flows
    # ========================================================================

    async def enter_sub_flow(
        self,
        parent: ExecutionContext,
        flow_uuid: str,
        parent_wakeup_at: datetime | None = None,
    ) -> tuple[ExecutionContext, list[Any]]:
        """Push a child context running flow_uuid on top of parent.

        The parent is left as it is unless parent_wakeup_at is given, in
        which case it is suspended until then (a timeout for the child).

        Returns:
            (child context, outputs). The engine produces no outputs itself;
            the list exists for hosts that render messages on entry.

        Raises:
            InvalidState: If the parent is completed
            NotFound: If flow_uuid is unknown or has no live revision
            EmptyFlowError: If the sub-flow has no nodes
        """
        self._require_open(parent, "enter a sub-flow from")

        compiled = await self._registry.fetch(flow_uuid)
        if compiled.is_empty:
            raise EmptyFlowError(compiled.id)

        if parent_wakeup_at is not None:
            await self.suspend(parent, parent_wakeup_at)

        child = await self.start(compiled, parent.contact_id, parent_id=parent.id)
        logger.debug(f"Context {parent.id} entered sub-flow {compiled.id}: child={child.id}")
        return child, []

    async def exit_sub_flow(self, child: ExecutionContext) -> ExecutionContext:
        """Pop child and hand control back to its parent.

        A child that has not completed is force-completed first. A
        suspended parent is resumed.

        Returns:
            The parent context, bound

        Raises:
            InvalidState: If child has no parent
            NotFound: If the parent no longer exists
        """
        if child.parent_id is None:
            raise InvalidState(f"Context {child.id} is not a sub-flow", context_id=child.id)

        if not child.is_completed:
            logger.warning(f"Sub-flow context {child.id} exited before completing")
            await self.complete(child)

        parent = await self.load(child.parent_id)
        if parent.is_suspended:
            await self.resume(parent)

        logger.debug(f"Context {child.id} returned to parent {parent.id}")
        return parent

    # ========================================================================
    # Transitions
    # ========================================================================

    async def advance(self, context: ExecutionContext, exit_index: int) -> ExecutionContext:
        """Follow exit exit_index of the current node.

        Moves the context to the exit's destination, or completes it when
        the exit has none.

        Raises:
            InvalidState: If the context is completed
            InvalidExit: If exit_index is out of range (nothing is written)
            DanglingReference: If the current node or the destination is
                missing from the graph. The context is force-completed.
            StaleContext: If the context changed in the store
        """
        self._require_open(context, "advance")
        await self.bind(context)

        node = context.uuid_map.get(context.node_uuid)
        if node is None:
            await self._dangling(context, context.node_uuid)

        destination = node.destination(exit_index)

        if destination is None:
            await self._write(context, {"completed_at": utc_now(), "wakeup_at": None})
            logger.info(f"Context {context.id} completed flow {context.flow_id}")
            return context

        if destination not in context.uuid_map:
            await self._dangling(context, destination)

        previous = context.node_uuid
        await self._write(context, {"node_uuid": destination, "wakeup_at": None})
        logger.debug(f"Context {context.id}: {previous} -[{exit_index}]-> {destination}")
        return context

    async def suspend(self, context: ExecutionContext, wakeup_at: datetime) -> ExecutionContext:
        """Park the context on its current node until wakeup_at.

        A wakeup_at in the past is allowed; the next scheduler tick resumes it.

        Raises:
            InvalidState: If the context is completed
        """
        self._require_open(context, "suspend")
        await self._write(context, {"wakeup_at": wakeup_at})
        logger.debug(f"Context {context.id} suspended until {wakeup_at.isoformat()}")
        return context

    async def resume(self, context: ExecutionContext) -> ExecutionContext:
        """Clear the context's wakeup time.

        Raises:
            InvalidState: If the context is completed
        """
        self._require_open(context, "resume")
        await self._write(context, {"wakeup_at": None})
        logger.debug(f"Context {context.id} resumed at node {context.node_uuid}")
        return context

    async def complete(self, context: ExecutionContext) -> ExecutionContext:
        """Force-complete the context, regardless of concurrent writers.

        Raises:
            InvalidState: If the context is already completed
        """
        self._require_open(context, "complete")
        await self._write(
            context, {"completed_at": utc_now(), "wakeup_at": None}, check_version=False
        )
        logger.info(f"Context {context.id} force-completed at node {context.node_uuid}")
        return context

    async def record_results(self, context: ExecutionContext, **values: Any) -> ExecutionContext:
        """Merge values into the context's results."""
        self._require_open(context, "record results on")
        if values:
            await self._write(context, {"results": {**context.results, **values}})
        return context

    def localize(self, compiled: CompiledFlow, language: str | None, key: str) -> str:
        """Localized text for key. Never raises."""
        return compiled.localize(language, key)

    # ========================================================================
    # Internals
    # ========================================================================

    @staticmethod
    def _require_open(context: ExecutionContext, action: str) -> None:
        if context.is_completed:
            raise InvalidState(
                f"Cannot {action} completed context {context.id}", context_id=context.id
            )

    async def _write(
        self,
        context: ExecutionContext,
        fields: dict[str, Any],
        check_version: bool = True,
    ) -> None:
        expected = context.version if check_version else None
        context.version = await self._store.update_context(context.id, fields, expected)
        for name, value in fields.items():
            setattr(context, name, value)
        context.updated_at = utc_now()

    async def _dangling(self, context: ExecutionContext, node_uuid: str) -> None:
        logger.error(
            f"Context {context.id} references node {node_uuid} missing from flow "
            f"{context.flow_id}, completing it"
        )
        await self._write(
            context, {"completed_at": utc_now(), "wakeup_at": None}, check_version=False
        )
        raise DanglingReference(context.id, node_uuid)
