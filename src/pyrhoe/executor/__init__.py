"""
Executor module - runtime side of the flow engine.

This module contains the execution components:
- manager: ContextManager, every state transition of a context
- scheduler: WakeupScheduler, resumes contexts whose wakeup time passed
- worker: Worker, long-running loop around the scheduler
"""

from pyrhoe.executor.manager import ContextManager, utc_now
from pyrhoe.executor.scheduler import WakeupScheduler
from pyrhoe.executor.worker import Worker, WorkerHandle

__all__ = [
    "ContextManager",
    "WakeupScheduler",
    "Worker",
    "WorkerHandle",
    "utc_now",
]
