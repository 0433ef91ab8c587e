"""
FlowEngine - host-facing entry point.

Design Pattern: Façade Pattern
The engine wires a store, a registry, a context manager and a wakeup
scheduler together and exposes the handful of calls a host needs:
start a flow, deliver an input, tick the clock, push and pop sub-flows,
cancel. Everything it does is available piecewise from those components.

The engine never interprets actions. After each call the host reads the
context's node (through context.uuid_map) and runs that node's actions
itself.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from pyrhoe.config import EngineSettings, open_store
from pyrhoe.core.compiled_flow import CompiledFlow
from pyrhoe.core.errors import InvalidState, NotFound, StaleContext
from pyrhoe.executor.manager import ContextManager
from pyrhoe.executor.scheduler import WakeupScheduler
from pyrhoe.flows.registry import FlowIdentifier, FlowRegistry
from pyrhoe.models import ExecutionContext, RetryPolicy
from pyrhoe.storage.base import FlowStore

logger = logging.getLogger(__name__)

__all__ = ["FlowEngine"]


class FlowEngine:
    """Drive contacts through compiled flows.

    Usage:
        store = await SqliteFlowStore.in_memory()
        engine = FlowEngine(store)
        await engine.load()

        context = await engine.start_flow("welcome", contact_id=42)
        context = await engine.deliver_input(context.id, exit_choice=0)
    """

    def __init__(
        self,
        store: FlowStore,
        registry: FlowRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        batch_size: int | None = None,
    ):
        self.store = store
        self.registry = registry or FlowRegistry(store)
        self.manager = ContextManager(store, self.registry)
        self.scheduler = WakeupScheduler(store, self.manager, batch_size=batch_size)
        self.retry_policy = retry_policy or RetryPolicy.DEFAULT

    @classmethod
    async def from_settings(cls, settings: EngineSettings | None = None) -> "FlowEngine":
        """Open the configured store and load every live flow.

        Reads the environment when settings is omitted.
        """
        settings = settings or EngineSettings.from_env()
        store = await open_store(settings)
        engine = cls(store, retry_policy=settings.retry_policy, batch_size=settings.batch_size)
        await engine.load()
        return engine

    async def load(self) -> FlowRegistry:
        """Compile every live flow into the registry snapshot."""
        return await self.registry.load_all()

    async def close(self) -> None:
        await self.store.close()

    # ========================================================================
    # Flow lifecycle
    # ========================================================================

    async def start_flow(self, identifier: FlowIdentifier, contact_id: int) -> ExecutionContext:
        """Start a flow (by id, uuid or shortcode) for a contact.

        Raises:
            NotFound: If the flow is unknown or has no live revision
            EmptyFlowError: If the flow has no nodes
        """
        compiled = await self.registry.fetch(identifier)
        return await self.manager.start(compiled, contact_id)

    async def deliver_input(
        self,
        context_id: str,
        exit_choice: int,
        results: dict[str, Any] | None = None,
    ) -> ExecutionContext:
        """Apply an input event: take exit exit_choice of the current node.

        A suspended context is resumed first (the event arrived before its
        wakeup time). results, when given, are merged into the context's
        results before advancing.

        Lost races (StaleContext) are retried against a fresh copy of the
        context, following the engine's RetryPolicy. The error propagates
        once attempts run out.

        Raises:
            NotFound: If the context does not exist
            InvalidState: If the context is completed
            InvalidExit: If exit_choice is out of range (nothing is written)
            DanglingReference: If the destination is missing from the graph
            StaleContext: If every attempt lost a race
        """
        attempt = 1
        while True:
            context = await self.manager.load(context_id)
            self._check_input(context, exit_choice)
            try:
                if context.is_suspended:
                    await self.manager.resume(context)
                if results:
                    await self.manager.record_results(context, **results)
                return await self.manager.advance(context, exit_choice)
            except StaleContext as e:
                delay_ms = self.retry_policy.delay_for_attempt(attempt)
                if delay_ms is None:
                    logger.warning(
                        f"Giving up on input for {context_id} after {attempt} attempt(s)"
                    )
                    raise
                logger.warning(f"Retrying input for {context_id} (attempt {attempt}): {e}")
                await asyncio.sleep(delay_ms / 1000.0)
                attempt += 1

    @staticmethod
    def _check_input(context: ExecutionContext, exit_choice: int) -> None:
        if context.is_completed:
            raise InvalidState(
                f"Cannot deliver input to completed context {context.id}", context_id=context.id
            )
        node = context.uuid_map.get(context.node_uuid)
        if node is not None:
            node.exit_at(exit_choice)

    async def tick(self, now: datetime | None = None) -> list[ExecutionContext]:
        """Resume every context whose wakeup time has passed."""
        return await self.scheduler.tick(now)

    async def suspend(self, context_id: str, wakeup_at: datetime) -> ExecutionContext:
        """Park a context until wakeup_at or the next input, whichever is first."""
        context = await self.manager.load(context_id)
        return await self.manager.suspend(context, wakeup_at)

    # ========================================================================
    # Sub-flows
    # ========================================================================

    async def enter_sub_flow(
        self,
        context_id: str,
        flow_uuid: str,
        parent_wakeup_at: datetime | None = None,
    ) -> tuple[ExecutionContext, list[Any]]:
        """Start flow_uuid as a child of context_id.

        See ContextManager.enter_sub_flow().
        """
        parent = await self.manager.load(context_id)
        return await self.manager.enter_sub_flow(parent, flow_uuid, parent_wakeup_at)

    async def exit_sub_flow(self, child_id: str) -> ExecutionContext:
        """Pop a child context and return its (resumed) parent."""
        child = await self.manager.load(child_id)
        return await self.manager.exit_sub_flow(child)

    # ========================================================================
    # Cancellation and queries
    # ========================================================================

    async def cancel(self, context_id: str, cascade: bool = True) -> ExecutionContext:
        """Force-complete a context, winning over any racing transition.

        Args:
            cascade: Also cancel the context's open sub-flows, depth first

        Raises:
            NotFound: If the context does not exist
            InvalidState: If the context is already completed
        """
        context = await self._get_unbound(context_id)
        if context.is_completed:
            raise InvalidState(
                f"Cannot cancel completed context {context_id}", context_id=context_id
            )
        if cascade:
            await self._cancel_children(context_id)
        return await self.manager.complete(context)

    async def _cancel_children(self, parent_id: str) -> None:
        for child in await self.store.get_child_contexts(parent_id):
            await self._cancel_children(child.id)
            if not child.is_completed:
                await self.manager.complete(child)

    async def get_context(self, context_id: str) -> ExecutionContext:
        """Load a context bound to its compiled flow.

        Raises:
            NotFound: If the context does not exist
        """
        return await self.manager.load(context_id)

    async def active_contexts(self, contact_id: int) -> list[ExecutionContext]:
        """Open (not completed) contexts of a contact, oldest first."""
        return await self.store.get_contact_contexts(contact_id)

    async def get_flow(self, identifier: FlowIdentifier) -> CompiledFlow:
        return await self.registry.fetch(identifier)

    async def localize(self, context: ExecutionContext, language: str | None, key: str) -> str:
        """Localized text for key in the flow context is running."""
        compiled = await self.registry.fetch(context.flow_id)
        return self.manager.localize(compiled, language, key)

    async def _get_unbound(self, context_id: str) -> ExecutionContext:
        context = await self.store.get_context(context_id)
        if context is None:
            raise NotFound(f"Context not found: {context_id}", identifier=context_id)
        return context
