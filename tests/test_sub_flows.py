"""
Tests for sub-flow entry and exit: the parent_id stack.
"""

from datetime import timedelta

import pytest

from pyrhoe.core.errors import EmptyFlowError, InvalidState, NotFound
from pyrhoe.executor.manager import utc_now
from pyrhoe.models import ContextStatus

from flow_samples import NODE_A, NODE_B, SUB_NODE, publish, single_node_document


@pytest.mark.asyncio
async def test_enter_sub_flow_pushes_child(store, manager, abc_flow, sub_flow):
    parent = await manager.start(abc_flow, contact_id=9)

    child, outputs = await manager.enter_sub_flow(parent, sub_flow.uuid)

    assert outputs == []
    assert child.parent_id == parent.id
    assert child.contact_id == parent.contact_id
    assert child.flow_id == sub_flow.id
    assert child.node_uuid == SUB_NODE
    assert child.status == ContextStatus.ACTIVE

    # Parent untouched by default
    assert parent.status == ContextStatus.ACTIVE
    assert parent.version == 1
    assert (await store.get_context(parent.id)).version == 1

    children = await store.get_child_contexts(parent.id)
    assert [c.id for c in children] == [child.id]


@pytest.mark.asyncio
async def test_enter_sub_flow_can_suspend_parent(store, manager, abc_flow, sub_flow):
    parent = await manager.start(abc_flow, contact_id=9)
    timeout = utc_now() + timedelta(minutes=10)

    await manager.enter_sub_flow(parent, sub_flow.uuid, parent_wakeup_at=timeout)

    assert parent.is_suspended
    stored = await store.get_context(parent.id)
    assert stored.wakeup_at == timeout


@pytest.mark.asyncio
async def test_enter_sub_flow_accepts_shortcode(manager, abc_flow, sub_flow):
    parent = await manager.start(abc_flow, contact_id=9)

    child, _ = await manager.enter_sub_flow(parent, "sub")

    assert child.flow_uuid == sub_flow.uuid


@pytest.mark.asyncio
async def test_enter_unknown_sub_flow_raises(manager, abc_flow):
    parent = await manager.start(abc_flow, contact_id=9)

    with pytest.raises(NotFound):
        await manager.enter_sub_flow(parent, "6b0c0f47-8d0c-4a4e-9d3c-000000000000")


@pytest.mark.asyncio
async def test_enter_empty_sub_flow_leaves_parent_alone(store, manager, abc_flow):
    empty = await publish(store, "empty", {"nodes": []})
    parent = await manager.start(abc_flow, contact_id=9)

    with pytest.raises(EmptyFlowError):
        await manager.enter_sub_flow(parent, empty.uuid, parent_wakeup_at=utc_now())

    assert parent.status == ContextStatus.ACTIVE
    assert await store.get_child_contexts(parent.id) == []


@pytest.mark.asyncio
async def test_completed_parent_cannot_enter_sub_flow(manager, abc_flow, sub_flow):
    parent = await manager.start(abc_flow, contact_id=9)
    await manager.complete(parent)

    with pytest.raises(InvalidState):
        await manager.enter_sub_flow(parent, sub_flow.uuid)


@pytest.mark.asyncio
async def test_exit_sub_flow_returns_resumed_parent(store, manager, abc_flow, sub_flow):
    parent = await manager.start(abc_flow, contact_id=9)
    await manager.advance(parent, 0)
    child, _ = await manager.enter_sub_flow(
        parent, sub_flow.uuid, parent_wakeup_at=utc_now() + timedelta(hours=1)
    )
    await manager.advance(child, 0)
    assert child.is_completed

    returned = await manager.exit_sub_flow(child)

    assert returned.id == parent.id
    assert returned.status == ContextStatus.ACTIVE
    assert returned.node_uuid == NODE_B
    assert returned.is_bound
    assert (await store.get_context(parent.id)).wakeup_at is None


@pytest.mark.asyncio
async def test_exit_sub_flow_force_completes_open_child(store, manager, abc_flow, sub_flow):
    parent = await manager.start(abc_flow, contact_id=9)
    child, _ = await manager.enter_sub_flow(parent, sub_flow.uuid)

    returned = await manager.exit_sub_flow(child)

    assert child.is_completed
    assert (await store.get_context(child.id)).is_completed
    # Parent was never suspended, so it comes back unchanged
    assert returned.status == ContextStatus.ACTIVE
    assert returned.node_uuid == NODE_A
    assert returned.version == 1


@pytest.mark.asyncio
async def test_exit_without_parent_raises(manager, abc_flow):
    context = await manager.start(abc_flow, contact_id=9)

    with pytest.raises(InvalidState):
        await manager.exit_sub_flow(context)

    assert not context.is_completed


@pytest.mark.asyncio
async def test_nested_sub_flows_form_a_stack(store, manager, abc_flow):
    inner_node = "e0000000-0000-4000-8000-000000000005"
    inner = await publish(store, "inner", single_node_document(inner_node))
    middle = await publish(store, "middle", single_node_document())
    root = await manager.start(abc_flow, contact_id=3)

    mid_ctx, _ = await manager.enter_sub_flow(root, middle.uuid)
    inner_ctx, _ = await manager.enter_sub_flow(mid_ctx, inner.uuid)

    assert inner_ctx.parent_id == mid_ctx.id
    assert mid_ctx.parent_id == root.id

    # Pop back up the stack
    assert (await manager.exit_sub_flow(inner_ctx)).id == mid_ctx.id
    reloaded_mid = await manager.load(mid_ctx.id)
    assert (await manager.exit_sub_flow(reloaded_mid)).id == root.id

    open_contexts = await store.get_contact_contexts(3)
    assert [c.id for c in open_contexts] == [root.id]
