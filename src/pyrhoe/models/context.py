"""
ExecutionContext: one running instance of a compiled flow for one contact.

Design principles:
- Plain dataclass, mutated in place by the context manager only
- Every field except uuid_map maps to a durable column
- Status is derived from the timestamps, never stored separately

A context moves through three states:

    ACTIVE     node_uuid on a live node, wakeup_at and completed_at unset
    SUSPENDED  wakeup_at set, completed_at unset
    COMPLETED  completed_at set (terminal, node_uuid no longer meaningful)
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyrhoe.models.status import ContextStatus

# Columns written by the store; uuid_map is an in-memory reference only.
CONTEXT_FIELDS = (
    "id",
    "contact_id",
    "flow_id",
    "flow_uuid",
    "node_uuid",
    "parent_id",
    "wakeup_at",
    "completed_at",
    "results",
    "version",
    "inserted_at",
    "updated_at",
)


@dataclass
class ExecutionContext:
    """
    Durable state of a flow running against one contact.

    Sub-flows are modelled with parent_id: a child context points back at
    the context that entered it. The chain only ever grows by pushing a
    new child, so it is acyclic by construction.
    """

    contact_id: int
    flow_id: int
    flow_uuid: str

    node_uuid: str
    """Node the context currently sits on."""

    id: str | None = None
    """Assigned by the store on insert."""

    parent_id: str | None = None
    """Context that entered this one as a sub-flow, if any."""

    wakeup_at: datetime | None = None
    """When set, the context is suspended until this time or an event."""

    completed_at: datetime | None = None
    """When set, the context is finished. Set once."""

    results: dict[str, Any] = field(default_factory=dict)
    """Values recorded by the host while the flow runs (e.g. last input)."""

    version: int = 0
    """Optimistic concurrency token, bumped by every store update."""

    inserted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    uuid_map: Mapping[str, Any] | None = field(default=None, compare=False, repr=False)
    """Reference to the compiled flow's node index (not persisted)."""

    @property
    def status(self) -> ContextStatus:
        if self.completed_at is not None:
            return ContextStatus.COMPLETED
        if self.wakeup_at is not None:
            return ContextStatus.SUSPENDED
        return ContextStatus.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_suspended(self) -> bool:
        return self.status == ContextStatus.SUSPENDED

    @property
    def is_bound(self) -> bool:
        """True once the context holds a compiled flow's node index."""
        return self.uuid_map is not None

    def is_due(self, now: datetime) -> bool:
        """True if the context is suspended and its wakeup time has passed."""
        return self.status == ContextStatus.SUSPENDED and self.wakeup_at <= now

    def to_row(self) -> dict[str, Any]:
        """Persistable fields of this context."""
        return {name: getattr(self, name) for name in CONTEXT_FIELDS}

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(id={self.id!r}, contact_id={self.contact_id!r}, "
            f"flow_id={self.flow_id!r}, node_uuid={self.node_uuid!r}, "
            f"status={self.status}, parent_id={self.parent_id!r})"
        )
