"""
Nested sub-flows.

A registration flow hands off to an address sub-flow, pausing itself while
the child runs. When the child finishes, exit_sub_flow() pops the stack and
resumes the parent where it left off.

Run:
    PYTHONPATH=src python examples/nested_flows.py
"""

import asyncio
import logging
from datetime import timedelta

from pyrhoe import FlowDefinition, FlowEngine, InMemoryFlowStore
from pyrhoe.executor import utc_now

REGISTER_UUID = "7e610000-0000-4000-8000-000000000001"
ADDRESS_UUID = "addd0000-0000-4000-8000-000000000002"

NAME = "7e610000-0000-4000-8000-0000000000a1"
CONFIRM = "7e610000-0000-4000-8000-0000000000a2"
STREET = "addd0000-0000-4000-8000-0000000000a1"
CITY = "addd0000-0000-4000-8000-0000000000a2"


def _node(node_uuid: str, exit_uuid: str, destination: str | None) -> dict:
    return {
        "uuid": node_uuid,
        "actions": [],
        "exits": [{"uuid": exit_uuid, "destination_uuid": destination}],
    }


REGISTER = {
    "nodes": [
        _node(NAME, "7e610000-0000-4000-8000-0000000000e1", CONFIRM),
        _node(CONFIRM, "7e610000-0000-4000-8000-0000000000e2", None),
    ]
}
ADDRESS = {
    "nodes": [
        _node(STREET, "addd0000-0000-4000-8000-0000000000e1", CITY),
        _node(CITY, "addd0000-0000-4000-8000-0000000000e2", None),
    ]
}


async def publish(store, flow_uuid: str, shortcode: str, document: dict) -> None:
    flow = await store.save_flow(
        FlowDefinition(uuid=flow_uuid, shortcode=shortcode, name=shortcode.title(), language="en")
    )
    await store.save_revision(flow.id, document)


async def main():
    store = InMemoryFlowStore()
    await publish(store, REGISTER_UUID, "register", REGISTER)
    await publish(store, ADDRESS_UUID, "address", ADDRESS)

    engine = FlowEngine(store)
    await engine.load()

    parent = await engine.start_flow("register", contact_id=7)
    parent = await engine.deliver_input(parent.id, 0, results={"name": "Asha"})
    print(f"Parent at {parent.node_uuid}")

    # Pause the parent for up to a day while the contact fills in the address
    child, _ = await engine.enter_sub_flow(
        parent.id, ADDRESS_UUID, parent_wakeup_at=utc_now() + timedelta(days=1)
    )
    paused = await engine.get_context(parent.id)
    print(f"Child {child.id} started, parent is {paused.status.value}")

    child = await engine.deliver_input(child.id, 0, results={"street": "MG Road"})
    child = await engine.deliver_input(child.id, 0, results={"city": "Pune"})
    print(f"Child status: {child.status.value}, results={child.results}")

    parent = await engine.exit_sub_flow(child.id)
    print(f"Parent resumed: {parent.status.value} at {parent.node_uuid}")

    open_contexts = await engine.active_contexts(7)
    print(f"Open contexts for contact 7: {[c.id for c in open_contexts]}")

    await engine.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
