"""Stored flow definitions and their revisions.

A FlowDefinition is the identity of a flow (id, uuid, shortcode) plus its
versioned revisions. The revision numbered 0 is the live one: it is the
only revision the loader fetches and the compiler turns into a graph.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyrhoe.models.status import FlowType, RevisionStatus

LIVE_REVISION = 0
"""Revision number of the live (executed) revision."""


@dataclass
class FlowRevision:
    """A versioned snapshot of a flow's JSON definition.

    Design: Value Object
        The definition is opaque JSON as emitted by the flow builder;
        nothing in this record interprets it.
    """

    flow_id: int
    """Identifier of the owning flow."""

    revision_number: int
    """0 for the live revision, increasing with age."""

    definition: dict[str, Any]
    """Raw builder document, possibly wrapped and carrying UI layout."""

    status: RevisionStatus = RevisionStatus.PUBLISHED

    inserted_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_live(self) -> bool:
        """True for the revision the engine executes."""
        return self.revision_number == LIVE_REVISION

    def __repr__(self) -> str:
        return (
            f"FlowRevision(flow_id={self.flow_id!r}, "
            f"revision_number={self.revision_number}, status={self.status})"
        )


@dataclass
class FlowDefinition:
    """Identity and metadata of an authored flow.

    Flows are addressable three ways: by integer id, by uuid and by
    shortcode (the keyword contacts type to trigger the flow).
    """

    uuid: str
    shortcode: str
    name: str

    language: str = "base"
    """Default language code; localization falls back to it."""

    flow_type: FlowType = FlowType.MESSAGE

    version_number: str = "13.1.0"
    """Flow builder document version."""

    id: int | None = None
    """Assigned by the store on first save."""

    revisions: list[FlowRevision] = field(default_factory=list)

    @property
    def live_revision(self) -> FlowRevision | None:
        """The revision numbered 0, if this definition carries one."""
        for revision in self.revisions:
            if revision.is_live:
                return revision
        return None

    def __repr__(self) -> str:
        return (
            f"FlowDefinition(id={self.id!r}, uuid={self.uuid!r}, "
            f"shortcode={self.shortcode!r}, flow_type={self.flow_type})"
        )
