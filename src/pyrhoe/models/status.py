"""Status enumerations for flow definitions and running contexts.

Defines the lifecycle states of an execution context, the kinds of
flow a builder tool can author, and the publishing state of a revision.
"""

from enum import Enum


class ContextStatus(Enum):
    """Status of a single execution context.

    Lifecycle:
        ACTIVE → SUSPENDED → ACTIVE → ... → COMPLETED

    Design: Derived, Never Stored
        The status is computed from the context's timestamps
        (completed_at, wakeup_at) so the two can never disagree.
    """

    ACTIVE = "ACTIVE"
    """Context sits on a live node and may advance."""

    SUSPENDED = "SUSPENDED"
    """Context is waiting for its wakeup time or an external event."""

    COMPLETED = "COMPLETED"
    """Context reached a terminal exit or was force-completed."""

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (no transitions out)."""
        return self == ContextStatus.COMPLETED

    def __str__(self) -> str:
        return self.value


class FlowType(Enum):
    """Kind of flow as authored in the flow builder."""

    MESSAGE = "message"
    SURVEY = "survey"
    CAMPAIGN = "campaign"

    def __str__(self) -> str:
        return self.value


class RevisionStatus(Enum):
    """Publishing state of a stored revision.

    Only the revision numbered 0 is executed, whatever its status;
    the status is informational for the authoring side.
    """

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"

    def __str__(self) -> str:
        return self.value
