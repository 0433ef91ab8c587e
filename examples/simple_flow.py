"""
Simple Flow Example

Publishes a three-node survey flow, starts it for one contact and walks it
to completion by delivering inputs.

## Pattern Shown: Input-driven advancement

This example shows how to:
- Save a flow definition and its live revision
- Compile everything with FlowEngine.load()
- Deliver exit choices and record results on the context
- Resolve localized text with the fallback chain

## Run with:
```bash
PYTHONPATH=src python examples/simple_flow.py
```
"""

import asyncio
import logging

from pyrhoe import FlowDefinition, FlowEngine, InMemoryFlowStore

ASK = "11111111-0000-4000-8000-000000000001"
ASK_MSG = "11111111-0000-4000-8000-0000000000a1"
THANKS = "22222222-0000-4000-8000-000000000002"
THANKS_MSG = "22222222-0000-4000-8000-0000000000a2"
BYE = "33333333-0000-4000-8000-000000000003"

SURVEY = {
    "name": "Survey",
    "language": "en",
    "nodes": [
        {
            "uuid": ASK,
            "actions": [{"uuid": ASK_MSG, "type": "send_msg", "text": "Do you like tea?"}],
            "exits": [
                {"uuid": "e1000000-0000-4000-8000-000000000001", "destination_uuid": THANKS},
                {"uuid": "e1000000-0000-4000-8000-000000000002", "destination_uuid": BYE},
            ],
        },
        {
            "uuid": THANKS,
            "actions": [{"uuid": THANKS_MSG, "type": "send_msg", "text": "Thanks!"}],
            "exits": [{"uuid": "e2000000-0000-4000-8000-000000000001"}],
        },
        {
            "uuid": BYE,
            "actions": [],
            "exits": [{"uuid": "e3000000-0000-4000-8000-000000000001"}],
        },
    ],
    "localization": {
        "hi": {ASK_MSG: {"text": ["Kya aapko chai pasand hai?"]}},
    },
}


async def main():
    """Publish the survey and run one contact through it."""
    store = InMemoryFlowStore()
    flow = await store.save_flow(
        FlowDefinition(
            uuid="5e1f0000-0000-4000-8000-000000000000",
            shortcode="survey",
            name="Survey",
            language="en",
        )
    )
    await store.save_revision(flow.id, SURVEY)

    engine = FlowEngine(store)
    await engine.load()

    context = await engine.start_flow("survey", contact_id=42)
    print(f"Started {context.id} at node {context.node_uuid}")

    for language in ("hi", "fr"):
        text = await engine.localize(context, language, f"{ASK_MSG}.text")
        print(f"  [{language}] {text}")

    # Exit 0: the contact answered "yes"
    context = await engine.deliver_input(context.id, 0, results={"likes_tea": True})
    print(f"Moved to {context.node_uuid}, results={context.results}")

    context = await engine.deliver_input(context.id, 0)
    print(f"Status: {context.status.value}")

    await engine.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
