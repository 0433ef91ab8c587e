"""
Tests for WakeupScheduler: due contexts resume, races are skipped.
"""

from datetime import timedelta

import pytest

from pyrhoe.executor import ContextManager, WakeupScheduler
from pyrhoe.executor.manager import utc_now
from pyrhoe.flows import FlowRegistry
from pyrhoe.models import ContextStatus
from pyrhoe.storage import InMemoryFlowStore
from pyrhoe.storage.base import StorageError

from flow_samples import abc_document, publish


class RacingStore(InMemoryFlowStore):
    """Another writer touches the first due context between read and resume."""

    async def get_due_contexts(self, now, limit=None):
        due = await super().get_due_contexts(now, limit)
        if due:
            await self.update_context(due[0].id, {"results": {"touched": True}})
        return due


@pytest.mark.asyncio
async def test_tick_resumes_only_due_contexts(store, manager, abc_flow):
    now = utc_now()
    due = await manager.start(abc_flow, contact_id=1)
    later = await manager.start(abc_flow, contact_id=2)
    active = await manager.start(abc_flow, contact_id=3)
    await manager.suspend(due, now - timedelta(seconds=1))
    await manager.suspend(later, now + timedelta(hours=1))

    resumed = await WakeupScheduler(store, manager).tick(now)

    assert [c.id for c in resumed] == [due.id]
    assert (await store.get_context(due.id)).status == ContextStatus.ACTIVE
    assert (await store.get_context(later.id)).status == ContextStatus.SUSPENDED
    assert (await store.get_context(active.id)).version == 1


@pytest.mark.asyncio
async def test_wakeup_exactly_now_is_due(store, manager, abc_flow):
    now = utc_now()
    context = await manager.start(abc_flow, contact_id=1)
    await manager.suspend(context, now)

    resumed = await WakeupScheduler(store, manager).tick(now)

    assert [c.id for c in resumed] == [context.id]


@pytest.mark.asyncio
async def test_completed_contexts_are_never_woken(store, manager, abc_flow):
    now = utc_now()
    context = await manager.start(abc_flow, contact_id=1)
    await manager.suspend(context, now - timedelta(minutes=1))
    await manager.complete(context)

    assert await WakeupScheduler(store, manager).tick(now) == []


@pytest.mark.asyncio
async def test_tick_resumes_earliest_first_within_batch(store, manager, abc_flow):
    now = utc_now()
    contexts = [await manager.start(abc_flow, contact_id=i) for i in range(3)]
    for offset, context in zip((3, 1, 2), contexts, strict=True):
        await manager.suspend(context, now - timedelta(minutes=offset))

    scheduler = WakeupScheduler(store, manager, batch_size=2)
    first = await scheduler.tick(now)
    second = await scheduler.tick(now)

    assert [c.id for c in first] == [contexts[0].id, contexts[2].id]
    assert [c.id for c in second] == [contexts[1].id]


@pytest.mark.asyncio
async def test_nothing_due_returns_empty(store, manager):
    assert await WakeupScheduler(store, manager).tick() == []


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_lost_race_is_skipped():
    store = RacingStore()
    registry = FlowRegistry(store)
    manager = ContextManager(store, registry)
    await publish(store, "abc", abc_document())
    compiled = await registry.fetch("abc")

    now = utc_now()
    raced = await manager.start(compiled, contact_id=1)
    clean = await manager.start(compiled, contact_id=2)
    await manager.suspend(raced, now - timedelta(minutes=2))
    await manager.suspend(clean, now - timedelta(minutes=1))

    resumed = await WakeupScheduler(store, manager).tick(now)

    assert [c.id for c in resumed] == [clean.id]
    # The raced context stays suspended for the next tick
    assert (await store.get_context(raced.id)).is_suspended


class BrokenRowStore(InMemoryFlowStore):
    """update_context fails with a backend error for the ids in `broken`."""

    def __init__(self):
        super().__init__()
        self.broken: set[str] = set()

    async def update_context(self, context_id, fields, expected_version=None):
        if context_id in self.broken:
            raise StorageError(f"backend rejected update of {context_id}")
        return await super().update_context(context_id, fields, expected_version)


async def _broken_row_setup():
    store = BrokenRowStore()
    registry = FlowRegistry(store)
    manager = ContextManager(store, registry)
    await publish(store, "abc", abc_document())
    compiled = await registry.fetch("abc")

    now = utc_now()
    broken = await manager.start(compiled, contact_id=1)
    healthy = await manager.start(compiled, contact_id=2)
    await manager.suspend(broken, now - timedelta(minutes=2))
    await manager.suspend(healthy, now - timedelta(minutes=1))
    store.broken.add(broken.id)
    return store, manager, broken, healthy


@pytest.mark.asyncio
async def test_storage_error_on_one_context_does_not_abort_tick(caplog):
    store, manager, broken, healthy = await _broken_row_setup()
    scheduler = WakeupScheduler(store, manager)

    resumed = await scheduler.tick()

    assert [c.id for c in resumed] == [healthy.id]
    assert scheduler.failed == [broken.id]
    assert (await store.get_context(broken.id)).is_suspended
    assert f"Failed to wake context {broken.id}" in caplog.text


@pytest.mark.asyncio
async def test_deleted_row_does_not_abort_tick():
    store, manager, broken, healthy = await _broken_row_setup()
    store.broken.clear()
    # Row vanishes between the due scan and the resume
    del store._contexts[broken.id]

    due = [broken, healthy]
    original = store.get_due_contexts

    async def stale_scan(now, limit=None):
        await original(now, limit)
        return due

    store.get_due_contexts = stale_scan
    scheduler = WakeupScheduler(store, manager)

    resumed = await scheduler.tick()

    assert [c.id for c in resumed] == [healthy.id]
    assert scheduler.failed == [broken.id]


@pytest.mark.asyncio
async def test_failed_list_resets_each_tick():
    store, manager, broken, _ = await _broken_row_setup()
    scheduler = WakeupScheduler(store, manager)
    await scheduler.tick()
    store.broken.clear()

    resumed = await scheduler.tick()

    assert [c.id for c in resumed] == [broken.id]
    assert scheduler.failed == []
