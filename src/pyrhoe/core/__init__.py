"""
Core types for the pyrhoe flow engine.

This module contains the fundamental graph and error types:
- Node, Exit, Action: data-only graph building blocks
- NodeIndex: read-only UUID → Node lookup over an ordered arena
- Localization: per-language text with a never-failing fallback chain
- CompiledFlow: immutable graph shared by all contexts of a flow
- FlowError and subclasses: the engine's error taxonomy
"""

from pyrhoe.core.compiled_flow import CompiledFlow
from pyrhoe.core.errors import (
    CompileError,
    DanglingReference,
    EmptyFlowError,
    FlowError,
    InvalidExit,
    InvalidState,
    NotFound,
    StaleContext,
)
from pyrhoe.core.localization import Localization, content_key, flatten_localization
from pyrhoe.core.node import Action, Exit, Node, NodeIndex

__all__ = [
    "Action",
    "CompiledFlow",
    "CompileError",
    "DanglingReference",
    "EmptyFlowError",
    "Exit",
    "FlowError",
    "InvalidExit",
    "InvalidState",
    "Localization",
    "Node",
    "NodeIndex",
    "NotFound",
    "StaleContext",
    "content_key",
    "flatten_localization",
]
