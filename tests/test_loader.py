"""
Tests for definition loading: envelope unwrapping and live revision lookup.
"""

import copy

import pytest

from pyrhoe.core.errors import NotFound
from pyrhoe.flows.loader import DefinitionLoader, clean_definition

from flow_samples import NODE_A, abc_document, make_definition, publish, single_node_document


def test_clean_definition_drops_ui_block():
    cleaned = clean_definition(abc_document())

    assert "_ui" not in cleaned
    assert cleaned["nodes"][0]["uuid"] == NODE_A


def test_clean_definition_unwraps_envelope():
    body = abc_document()
    cleaned = clean_definition({"definition": body, "_ui": {"stale": True}})

    assert "_ui" not in cleaned
    assert [n["uuid"] for n in cleaned["nodes"]] == [n["uuid"] for n in body["nodes"]]


def test_clean_definition_keeps_scalar_definition_field():
    """A "definition" key that is not an object is ordinary content."""
    document = {"definition": "v2", "nodes": []}

    assert clean_definition(document) == {"definition": "v2", "nodes": []}


def test_clean_definition_does_not_mutate_input():
    document = {"definition": abc_document()}
    snapshot = copy.deepcopy(document)

    clean_definition(document)

    assert document == snapshot


@pytest.mark.asyncio
async def test_load_definition_returns_live_revision(store):
    definition = await publish(store, "first", single_node_document())
    await store.save_revision(definition.id, abc_document())

    loaded = await DefinitionLoader(store).load_definition(definition.id)

    # Newest revision is live
    assert len(loaded["nodes"]) == 3
    assert "_ui" not in loaded


@pytest.mark.asyncio
async def test_load_definition_without_revision_raises(store):
    definition = await store.save_flow(make_definition("draft"))

    with pytest.raises(NotFound) as exc_info:
        await DefinitionLoader(store).load_definition(definition.id)

    assert exc_info.value.identifier == definition.id
    assert exc_info.value.is_retryable()


@pytest.mark.asyncio
async def test_flow_with_only_revision_one_is_not_found(sqlite_memory_store):
    """Only revision 0 is live; an older revision alone cannot be loaded."""
    store = sqlite_memory_store
    definition = await publish(store, "old", single_node_document())
    await store.save_revision(definition.id, single_node_document())

    # Drop the live revision, leaving only revision 1 behind
    await store._connection.execute(
        "DELETE FROM flow_revisions WHERE flow_id = ? AND revision_number = 0",
        (definition.id,),
    )

    with pytest.raises(NotFound):
        await DefinitionLoader(store).load_definition(definition.id)
