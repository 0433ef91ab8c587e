"""Sample builder documents and helpers shared by the test modules."""

from uuid import uuid4

from hypothesis import strategies as st

from pyrhoe.models import FlowDefinition
from pyrhoe.storage.base import FlowStore

# Fixed node and exit uuids of the sample A -> B -> C flow
NODE_A = "a0000000-0000-4000-8000-000000000001"
NODE_B = "b0000000-0000-4000-8000-000000000002"
NODE_C = "c0000000-0000-4000-8000-000000000003"
ACTION_A = "a1000000-0000-4000-8000-000000000001"
CASE_B = "b1000000-0000-4000-8000-000000000002"
CATEGORY_B = "b2000000-0000-4000-8000-000000000002"
SUB_NODE = "d0000000-0000-4000-8000-000000000004"


def abc_document() -> dict:
    """A -> B -> C. B has a second, terminal exit; C ends the flow."""
    return {
        "name": "ABC",
        "language": "en",
        "nodes": [
            {
                "uuid": NODE_A,
                "actions": [
                    {"uuid": ACTION_A, "type": "send_msg", "text": "Hello", "quick_replies": []}
                ],
                "exits": [
                    {"uuid": "ea000000-0000-4000-8000-000000000001", "destination_uuid": NODE_B}
                ],
            },
            {
                "uuid": NODE_B,
                "actions": [],
                "router": {
                    "type": "switch",
                    "cases": [{"uuid": CASE_B, "type": "has_any_word", "arguments": ["yes"]}],
                    "categories": [{"uuid": CATEGORY_B, "name": "Yes", "exit_uuid": "x"}],
                },
                "exits": [
                    {"uuid": "eb000000-0000-4000-8000-000000000001", "destination_uuid": NODE_C},
                    {"uuid": "eb000000-0000-4000-8000-000000000002", "destination_uuid": None},
                ],
            },
            {
                "uuid": NODE_C,
                "actions": [],
                "exits": [{"uuid": "ec000000-0000-4000-8000-000000000001"}],
            },
        ],
        "localization": {
            "hi": {ACTION_A: {"text": ["Namaste"]}},
        },
        "_ui": {"nodes": {NODE_A: {"position": {"left": 0, "top": 0}}}},
    }


def single_node_document(node_uuid: str = SUB_NODE) -> dict:
    return {
        "nodes": [
            {
                "uuid": node_uuid,
                "actions": [],
                "exits": [{"uuid": "ed000000-0000-4000-8000-000000000001"}],
            }
        ]
    }


def make_definition(shortcode: str, **kwargs) -> FlowDefinition:
    return FlowDefinition(
        uuid=kwargs.pop("uuid", str(uuid4())),
        shortcode=shortcode,
        name=kwargs.pop("name", shortcode.title()),
        language=kwargs.pop("language", "en"),
        **kwargs,
    )


async def publish(store: FlowStore, shortcode: str, document: dict, **kwargs) -> FlowDefinition:
    """Save a flow and make document its live revision."""
    definition = await store.save_flow(make_definition(shortcode, **kwargs))
    await store.save_revision(definition.id, document)
    return definition


@st.composite
def flow_document_strategy(draw, min_nodes: int = 0, max_nodes: int = 12):
    """Valid builder documents: unique node uuids, every destination defined."""
    node_uuids = draw(
        st.lists(st.uuids().map(str), min_size=min_nodes, max_size=max_nodes, unique=True)
    )
    nodes = []
    for node_uuid in node_uuids:
        destinations = draw(
            st.lists(st.one_of(st.none(), st.sampled_from(node_uuids)), max_size=4)
        )
        exits = [
            {"uuid": str(uuid4()), "destination_uuid": destination}
            for destination in destinations
        ]
        nodes.append({"uuid": node_uuid, "actions": [], "exits": exits})
    return {"nodes": nodes}
