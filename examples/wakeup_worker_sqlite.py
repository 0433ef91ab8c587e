"""
Durable Wakeups - SQLite Version

A reminder flow suspends each contact for a short delay. A Worker polls the
store, resumes the contexts whose wakeup time has passed and hands them to
a handler that moves them down the "no reply" exit.

## Pattern Shown: Durable wakeups with a polling worker

This example shows how to:
- Configure the engine from PYRHOE_* environment variables
- Suspend contexts with a wakeup time that survives restarts
- Run a Worker with a wakeup handler and shut it down gracefully

## Run with:
```bash
PYRHOE_STORE_URL=sqlite:///data/reminders.db PYTHONPATH=src python examples/wakeup_worker_sqlite.py
```
"""

import asyncio
import logging
import os
from datetime import timedelta

from pyrhoe import EngineSettings, FlowDefinition, FlowEngine, Worker
from pyrhoe.executor import utc_now

WAIT = "9a170000-0000-4000-8000-000000000001"
REMIND = "9a170000-0000-4000-8000-000000000002"
NO_REPLY_EXIT = 1

REMINDER = {
    "nodes": [
        {
            "uuid": WAIT,
            "actions": [],
            "exits": [
                {"uuid": "9a17e000-0000-4000-8000-000000000001", "destination_uuid": None},
                {"uuid": "9a17e000-0000-4000-8000-000000000002", "destination_uuid": REMIND},
            ],
        },
        {
            "uuid": REMIND,
            "actions": [{"uuid": "9a17a000-0000-4000-8000-000000000001", "type": "send_msg"}],
            "exits": [{"uuid": "9a17e000-0000-4000-8000-000000000003"}],
        },
    ]
}


async def main():
    os.makedirs("data", exist_ok=True)
    settings = EngineSettings.from_env()
    if settings.store_url == "memory://":
        settings = EngineSettings(store_url="sqlite:///data/reminders.db", tick_interval=0.2)

    engine = await FlowEngine.from_settings(settings)
    await engine.store.reset()

    flow = await engine.store.save_flow(
        FlowDefinition(
            uuid="9a170000-0000-4000-8000-00000000f10a",
            shortcode="reminder",
            name="Reminder",
            language="en",
        )
    )
    await engine.store.save_revision(flow.id, REMINDER)
    await engine.load()

    contexts = []
    for contact_id in range(1, 4):
        context = await engine.start_flow("reminder", contact_id=contact_id)
        await engine.suspend(context.id, utc_now() + timedelta(seconds=contact_id * 0.5))
        contexts.append(context)
    print(f"Suspended {len(contexts)} contexts")

    done = asyncio.Event()
    reminded = []

    async def on_wakeup(context):
        context = await engine.deliver_input(context.id, NO_REPLY_EXIT)
        reminded.append(context.contact_id)
        print(f"Contact {context.contact_id} reminded at node {context.node_uuid}")
        if len(reminded) == len(contexts):
            done.set()

    worker = Worker(engine.store, "reminder-worker").from_env(settings)
    worker.with_wakeup_handler(on_wakeup)
    handle = await worker.start()

    try:
        await asyncio.wait_for(done.wait(), timeout=10.0)
    finally:
        await handle.shutdown()

    print(f"Worker resumed {worker.resumed_count} context(s)")
    await engine.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
