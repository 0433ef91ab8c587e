"""
Tests for FlowRegistry: bulk loading, per-flow failure isolation, lookups.
"""

import logging
import uuid

import pytest

from pyrhoe.core.errors import NotFound
from pyrhoe.flows.registry import FlowRegistry

from flow_samples import NODE_A, abc_document, make_definition, publish, single_node_document


@pytest.mark.asyncio
async def test_load_all_indexes_by_id_uuid_and_shortcode(store, registry):
    definition = await publish(store, "abc", abc_document())

    result = await registry.load_all()

    assert result is registry
    assert len(registry) == 1
    by_id = registry.get(definition.id)
    assert by_id is not None
    assert registry.get(definition.uuid) is by_id
    assert registry.get(uuid.UUID(definition.uuid)) is by_id
    assert registry.get("abc") is by_id
    assert definition.id in registry
    assert "abc" in registry


@pytest.mark.asyncio
async def test_load_all_isolates_compile_failures(store, registry, caplog):
    good = await publish(store, "good", abc_document())
    broken = await publish(store, "broken", {"nodes": [{"actions": []}]})

    with caplog.at_level(logging.WARNING, logger="pyrhoe.flows.registry"):
        await registry.load_all()

    assert registry.get(good.id) is not None
    assert registry.get(broken.id) is None
    assert set(registry.failures) == {broken.id}
    assert "broken" in caplog.text


@pytest.mark.asyncio
async def test_load_all_skips_flows_without_live_revision(store, registry):
    await store.save_flow(make_definition("draft"))
    await publish(store, "live", single_node_document())

    await registry.load_all()

    assert len(registry) == 1
    assert "draft" not in registry


@pytest.mark.asyncio
async def test_load_all_single_flow(store, registry):
    first = await publish(store, "first", abc_document())
    await publish(store, "second", single_node_document())

    await registry.load_all(first.id)

    assert len(registry) == 1
    assert "first" in registry
    assert "second" not in registry


@pytest.mark.asyncio
async def test_unchanged_flow_keeps_instance(store, registry):
    definition = await publish(store, "abc", abc_document())
    await registry.load_all()
    before = registry.get(definition.id)

    # Same content saved as a new revision
    await store.save_revision(definition.id, abc_document())
    await registry.refresh()

    assert registry.get(definition.id) is before


@pytest.mark.asyncio
async def test_changed_flow_recompiles_on_refresh(store, registry):
    definition = await publish(store, "abc", abc_document())
    await registry.load_all()
    before = registry.get("abc")

    await store.save_revision(definition.id, single_node_document())
    await registry.refresh()

    after = registry.get("abc")
    assert after is not before
    assert len(after.nodes) == 1
    assert registry.get(definition.uuid) is after
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_renamed_flow_recompiles_on_refresh(store, registry):
    definition = await publish(store, "old", abc_document(), language="en")
    await registry.load_all()
    before = registry.get("old")

    definition.shortcode = "new"
    definition.language = "hi"
    await store.save_flow(definition)
    await registry.refresh()

    after = registry.get("new")
    assert after is not None
    assert after is not before
    assert after.shortcode == "new"
    assert after.language == "hi"
    assert registry.get("old") is None
    assert registry.get(definition.id) is after
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_renamed_flow_replaces_keys_on_load_all(store, registry):
    definition = await publish(store, "old", abc_document())
    await registry.load_all()

    definition.shortcode = "new"
    await store.save_flow(definition)
    await registry.load_all()

    assert registry.get("old") is None
    assert registry.get("new").shortcode == "new"
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_fixed_flow_leaves_failures(store, registry):
    definition = await publish(store, "fixme", {"nodes": "broken"})
    await registry.load_all()
    assert definition.id in registry.failures

    await store.save_revision(definition.id, abc_document())
    await registry.load_all()

    assert registry.failures == {}
    assert "fixme" in registry


@pytest.mark.asyncio
async def test_get_never_loads(store, registry):
    await publish(store, "abc", abc_document())

    assert registry.get("abc") is None
    assert registry.get(12345) is None
    assert registry.get(None) is None


@pytest.mark.asyncio
async def test_fetch_compiles_and_caches(store, registry):
    await publish(store, "abc", abc_document())

    fetched = await registry.fetch("abc")

    assert fetched.entry_node.uuid == NODE_A
    assert registry.get("abc") is fetched
    assert await registry.fetch(fetched.id) is fetched


@pytest.mark.asyncio
async def test_fetch_unknown_flow_raises(registry):
    with pytest.raises(NotFound):
        await registry.fetch("missing")


@pytest.mark.asyncio
async def test_load_one_bypasses_snapshot(store, registry):
    definition = await publish(store, "abc", abc_document())
    cached = await registry.fetch(definition.id)

    fresh = await registry.load_one(definition.uuid)

    assert fresh is not cached
    assert fresh.checksum == cached.checksum
    assert registry.get(definition.id) is cached


@pytest.mark.asyncio
async def test_load_one_without_live_revision_raises(store, registry):
    definition = await store.save_flow(make_definition("draft"))

    with pytest.raises(NotFound):
        await registry.load_one(definition.id)


@pytest.mark.asyncio
async def test_evict_removes_every_key(store, registry):
    definition = await publish(store, "abc", abc_document())
    await registry.load_all()

    evicted = registry.evict("abc")

    assert evicted is not None
    assert len(registry) == 0
    for key in (definition.id, definition.uuid, "abc"):
        assert key not in registry
    assert registry.evict("abc") is None


@pytest.mark.asyncio
async def test_registries_are_independent(store):
    await publish(store, "abc", abc_document())
    first = await FlowRegistry(store).load_all()
    second = FlowRegistry(store)

    assert "abc" in first
    assert "abc" not in second
