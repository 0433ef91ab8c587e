"""Core data models for flow execution.

Defines the stored flow definitions and revisions, the durable execution
context, status enumerations and the retry policy.

Design: Dependency-Free Models
These types have no dependencies on core, flows or storage modules to
prevent circular imports and enable clean layering.
"""

from pyrhoe.models.context import CONTEXT_FIELDS, ExecutionContext
from pyrhoe.models.flow_definition import LIVE_REVISION, FlowDefinition, FlowRevision
from pyrhoe.models.retry import RetryPolicy
from pyrhoe.models.status import ContextStatus, FlowType, RevisionStatus

__all__ = [
    "CONTEXT_FIELDS",
    "ExecutionContext",
    "ContextStatus",
    "FlowDefinition",
    "FlowRevision",
    "FlowType",
    "LIVE_REVISION",
    "RevisionStatus",
    "RetryPolicy",
]
