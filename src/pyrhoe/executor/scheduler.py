"""
WakeupScheduler - resumes suspended contexts whose wakeup time has passed.

Design Principle: Single Responsibility (SOLID)
The scheduler has ONE job: turn due wakeup rows into resumed contexts.
It does not loop or sleep (that's Worker's job) and it does not pick
exits (that's the host's job, through FlowEngine.deliver_input).

Wake times live in the store, never in in-memory timers, so any process
calling tick() after a crash picks up every context that came due while
nothing was running.
"""

import logging
from datetime import datetime

from pyrhoe.core.errors import FlowError, InvalidState, StaleContext
from pyrhoe.executor.manager import ContextManager, utc_now
from pyrhoe.models import ExecutionContext
from pyrhoe.storage.base import FlowStore, StorageError

logger = logging.getLogger(__name__)

__all__ = ["WakeupScheduler"]


class WakeupScheduler:
    """Resume every due context in one pass.

    Usage:
        scheduler = WakeupScheduler(store, manager)
        resumed = await scheduler.tick()
    """

    def __init__(self, store: FlowStore, manager: ContextManager, batch_size: int | None = None):
        self._store = store
        self._manager = manager
        self._batch_size = batch_size
        self.failed: list[str] = []
        """Ids the last tick failed to resume, lost races excluded."""

    async def tick(self, now: datetime | None = None) -> list[ExecutionContext]:
        """Resume contexts with wakeup_at <= now.

        A context that another worker or an incoming event changed in the
        meantime is skipped; the race is already settled by the winner. Any
        other failure on one context (row deleted, backend error) is logged,
        recorded in failed and the tick moves on to the next context.

        Args:
            now: Current time (explicit parameter for testability)

        Returns:
            The contexts this tick resumed
        """
        now = now or utc_now()
        self.failed = []
        due = await self._store.get_due_contexts(now, limit=self._batch_size)
        if not due:
            return []

        logger.debug(f"Processing {len(due)} due context(s)")
        resumed: list[ExecutionContext] = []
        for context in due:
            try:
                await self._manager.resume(context)
            except (StaleContext, InvalidState) as e:
                logger.warning(f"Skipping wakeup of context {context.id}: {e}")
                continue
            except (FlowError, StorageError) as e:
                logger.error(f"Failed to wake context {context.id}: {e}")
                self.failed.append(context.id)
                continue
            logger.info(f"Woke context {context.id} at node {context.node_uuid}")
            resumed.append(context)
        return resumed
