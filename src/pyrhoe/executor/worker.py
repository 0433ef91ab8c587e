"""Polling worker that wakes suspended contexts when they come due.

The worker calls WakeupScheduler.tick() in a loop and sleeps until the next
stored wakeup time or the tick interval, whichever comes first. Wake times
are durable rows, so several workers can poll the same store and a
restarted worker resumes whatever came due while it was down. Concurrent
workers never resume the same context twice: the loser of the race gets
StaleContext and skips it.

Features:
- Sleeps until the next wakeup instead of a fixed poll where possible
- Optional async handler invoked with every resumed context
- Bounded batches per tick, draining immediately when a batch was full
- Graceful shutdown
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from pyrhoe.config import EngineSettings
from pyrhoe.executor.manager import ContextManager, utc_now
from pyrhoe.executor.scheduler import WakeupScheduler
from pyrhoe.flows.registry import FlowRegistry
from pyrhoe.models import ExecutionContext
from pyrhoe.storage.base import FlowStore

logger = logging.getLogger(__name__)

__all__ = ["Worker", "WorkerHandle"]

WakeupHandler = Callable[[ExecutionContext], Awaitable[None]]


class Worker:
    """Worker that resumes due contexts from a shared store.

    Design Patterns:
    - Template Method: _run() defines the fixed tick/sleep loop
    - Builder: with_tick_interval(), with_batch_size() for configuration

    Usage:
        store = SqliteFlowStore("flows.db")
        await store.connect()

        worker = Worker(store, "worker-1") \\
            .with_tick_interval(0.5) \\
            .with_batch_size(50)

        handle = await worker.start()

        # ... let it run ...

        await handle.shutdown()
    """

    def __init__(self, store: FlowStore, worker_id: str, registry: FlowRegistry | None = None):
        """Initialize worker with storage backend.

        All dependencies passed explicitly, no globals.

        Args:
            store: Store holding the contexts to wake
            worker_id: Unique worker identifier, used in logs
            registry: Registry shared with an engine. A private one is
                created when omitted.
        """
        self._store = store
        self._worker_id = worker_id
        self._registry = registry or FlowRegistry(store)
        self._manager = ContextManager(store, self._registry)
        self._tick_interval = 1.0
        self._batch_size = 100
        self._handler: WakeupHandler | None = None

        # Jitter spreads workers started together over the polling window
        worker_hash = sum(ord(c) for c in worker_id)
        self._jitter = (1 + worker_hash % 5) / 1000.0

        self._shutdown_event = asyncio.Event()
        self._running = False
        self._resumed_count = 0

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def resumed_count(self) -> int:
        """Contexts this worker has resumed since it started."""
        return self._resumed_count

    def with_tick_interval(self, interval: float) -> "Worker":
        """Set the longest sleep between ticks (builder pattern).

        Default is 1 second. The worker wakes earlier when a stored wakeup
        time falls inside the interval.

        Args:
            interval: Seconds between ticks

        Returns:
            self for method chaining
        """
        if interval <= 0:
            raise ValueError(f"tick interval must be positive, got {interval}")
        self._tick_interval = interval
        return self

    def with_batch_size(self, batch_size: int) -> "Worker":
        """Cap the number of contexts resumed per tick (builder pattern).

        Returns:
            self for method chaining
        """
        if batch_size <= 0:
            raise ValueError(f"batch size must be positive, got {batch_size}")
        self._batch_size = batch_size
        return self

    def with_wakeup_handler(self, handler: WakeupHandler) -> "Worker":
        """Call handler with every context this worker resumes (builder pattern).

        A failing handler is logged; it neither stops the worker nor undoes
        the resume.

        Example:
            async def on_wakeup(context):
                await engine.deliver_input(context.id, TIMEOUT_EXIT)

            worker = Worker(store, "worker-1").with_wakeup_handler(on_wakeup)
        """
        self._handler = handler
        return self

    def from_env(self, settings: EngineSettings | None = None) -> "Worker":
        """Apply PYRHOE_TICK_INTERVAL and PYRHOE_BATCH_SIZE (builder pattern).

        Example:
            # $ export PYRHOE_TICK_INTERVAL=0.25
            worker = Worker(store, "worker-1").from_env()
        """
        settings = settings or EngineSettings.from_env()
        return self.with_tick_interval(settings.tick_interval).with_batch_size(
            settings.batch_size
        )

    async def start(self) -> "WorkerHandle":
        """Start the worker main loop.

        Returns WorkerHandle immediately, letting caller decide
        whether to await or run concurrently.

        Returns:
            WorkerHandle for shutdown control
        """
        self._running = True
        self._shutdown_event.clear()
        task = asyncio.create_task(self._run())
        return WorkerHandle(self, task)

    async def _run(self) -> None:
        """Main loop: tick, then sleep until the next wakeup or shutdown."""
        scheduler = WakeupScheduler(self._store, self._manager, batch_size=self._batch_size)
        logger.info(f"Worker {self._worker_id} started")

        try:
            while not self._shutdown_event.is_set():
                batch_full = False
                failing = False
                try:
                    resumed = await scheduler.tick()
                    self._resumed_count += len(resumed)
                    batch_full = len(resumed) >= self._batch_size
                    failing = bool(scheduler.failed)
                    for context in resumed:
                        await self._notify(context)
                except Exception as e:
                    logger.error(f"Worker {self._worker_id} error: {e}")
                    failing = True

                # Rows that keep failing stay due; back off a full interval
                if failing:
                    delay = self._tick_interval + self._jitter
                elif batch_full:
                    delay = 0.0
                else:
                    delay = await self._sleep_duration()
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
                except TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info(
                f"Worker {self._worker_id} stopped after resuming {self._resumed_count} context(s)"
            )

    async def _notify(self, context: ExecutionContext) -> None:
        if self._handler is None:
            return
        try:
            await self._handler(context)
        except Exception as e:
            logger.error(f"Worker {self._worker_id}: wakeup handler failed for {context.id}: {e}")

    async def _sleep_duration(self) -> float:
        """Seconds until the next stored wakeup, capped at the tick interval."""
        interval = self._tick_interval + self._jitter
        next_wakeup = await self._next_wakeup()
        if next_wakeup is None:
            return interval
        remaining = (next_wakeup - utc_now()).total_seconds()
        return min(max(remaining, 0.0), interval)

    async def _next_wakeup(self) -> datetime | None:
        try:
            return await self._store.get_next_wakeup_time()
        except Exception as e:
            logger.warning(f"Worker {self._worker_id}: Failed to get next wakeup: {e}")
            return None

    async def shutdown(self) -> None:
        """Ask the loop to stop after the current tick."""
        logger.info(f"Worker {self._worker_id} shutting down...")
        self._shutdown_event.set()


class WorkerHandle:
    """Handle for controlling a running worker.

    Composition - handle HAS-A worker, not IS-A worker.

    Usage:
        handle = await worker.start()
        await handle.shutdown()
    """

    def __init__(self, worker: Worker, task: asyncio.Task):
        self._worker = worker
        self._task = task

    @property
    def worker_id(self) -> str:
        return self._worker.worker_id

    def is_running(self) -> bool:
        """Return True if the worker task is still running."""
        return not self._task.done()

    async def shutdown(self) -> None:
        """Signal shutdown and wait for the loop to finish its current tick."""
        await self._worker.shutdown()
        await self._task
        logger.info("Worker handle closed")

    def abort(self) -> None:
        """Cancel the worker task without waiting for the current tick.

        Safe for durability: no state lives in the worker, so the next
        worker picks up every context this one did not resume.
        """
        self._task.cancel()
