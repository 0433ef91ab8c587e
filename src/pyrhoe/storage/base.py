"""
FlowStore protocol - Abstract interface for storage backends.

Design Pattern: Adapter Pattern
FlowStore defines the target interface that all storage adapters implement.
Different storage backends (SQLite, Redis, Memory) adapt to this common interface.

Design Principle: Dependency Inversion (SOLID)
High-level modules (loader, registry, context manager, scheduler) depend on
this abstraction, not on concrete storage implementations.

From Dave Cheney's Practical Go:
"Let functions define the behavior they require" - the context manager only
needs FlowStore, not SqliteFlowStore. This allows easy testing with
InMemoryFlowStore.

Concurrency contract:
insert_context and update_context are atomic single-row operations.
update_context with an expected_version is a compare-and-set: it applies
only if the stored version still matches and raises StaleContext otherwise.
This is the only per-context mutual exclusion the engine relies on.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pyrhoe.models import ExecutionContext, FlowDefinition, FlowRevision, RevisionStatus

__all__ = ["FlowStore", "StorageError", "MUTABLE_CONTEXT_FIELDS", "split_identifier"]

MUTABLE_CONTEXT_FIELDS = frozenset({"node_uuid", "wakeup_at", "completed_at", "results"})
"""Fields update_context accepts; identity fields never change after insert."""


class StorageError(Exception):
    """
    Storage operation failed.

    From Dave Cheney: "Errors are values"
    Custom exception with context, not generic Exception.
    """

    pass


def split_identifier(identifier: int | str | uuid.UUID) -> tuple[str, Any]:
    """Classify a flow identifier as ("id", int), ("uuid", str) or ("shortcode", str).

    Integers are ids. Strings that parse as a UUID are uuids. Every other
    string is a shortcode, including digit-only ones.
    """
    if isinstance(identifier, bool):
        raise TypeError(f"Invalid flow identifier: {identifier!r}")
    if isinstance(identifier, int):
        return "id", identifier
    if isinstance(identifier, uuid.UUID):
        return "uuid", str(identifier)
    if isinstance(identifier, str):
        try:
            return "uuid", str(uuid.UUID(identifier))
        except ValueError:
            return "shortcode", identifier
    raise TypeError(f"Invalid flow identifier: {identifier!r}")


def check_update_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - MUTABLE_CONTEXT_FIELDS
    if unknown:
        raise StorageError(f"Cannot update context fields: {sorted(unknown)}")


class FlowStore(ABC):
    """
    Abstract storage interface for flow definitions and execution contexts.

    Clients program to this interface, not to concrete implementations.

    Pattern Benefits:
    - Open-Closed Principle: Add new storage backends without modifying clients
    - Testability: Easy to stub with InMemoryFlowStore
    - Flexibility: Switch storage at runtime (SQLite <-> Redis <-> Memory)
    """

    # ========================================================================
    # Flow Operations - Definitions and revisions
    # ========================================================================

    @abstractmethod
    async def save_flow(self, definition: FlowDefinition) -> FlowDefinition:
        """
        Insert or update a flow's identity and metadata.

        Revisions attached to the definition are ignored; use
        save_revision() to add one.

        Args:
            definition: Flow to save. id is assigned when None.

        Returns:
            The saved definition with its id set

        Raises:
            StorageError: If uuid or shortcode collide with another flow
        """
        pass

    @abstractmethod
    async def save_revision(
        self,
        flow_id: int,
        definition: dict[str, Any],
        status: RevisionStatus = RevisionStatus.PUBLISHED,
    ) -> FlowRevision:
        """
        Store a new revision and make it the live one.

        The new revision becomes revision 0; existing revisions of the flow
        are renumbered upward by one, so numbers always count age.

        Raises:
            StorageError: If the flow does not exist
        """
        pass

    @abstractmethod
    async def get_flow(self, identifier: int | str | uuid.UUID) -> FlowDefinition | None:
        """
        Look a flow up by id, uuid or shortcode.

        From Dave Cheney: "Make the zero value useful" - returns None
        when the flow doesn't exist rather than raising.
        """
        pass

    @abstractmethod
    async def fetch_live_revision(self, flow_id: int) -> FlowRevision | None:
        """Return the revision numbered 0 for flow_id, or None."""
        pass

    @abstractmethod
    async def fetch_active_flows_with_live_revisions(
        self, flow_id: int | None = None
    ) -> list[tuple[FlowDefinition, dict[str, Any]]]:
        """
        Every flow holding a live revision, paired with the raw definition.

        Args:
            flow_id: Restrict the result to this one flow

        Returns:
            (flow metadata, live definition JSON) pairs, ordered by flow id
        """
        pass

    # ========================================================================
    # Context Operations - Durable execution state
    # ========================================================================

    @abstractmethod
    async def insert_context(self, context: ExecutionContext) -> ExecutionContext:
        """
        Persist a new context.

        Assigns id (uuid7) when missing and sets version to 1. Returns the
        same object, updated in place.
        """
        pass

    @abstractmethod
    async def update_context(
        self,
        context_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        """
        Atomically update mutable fields of one context.

        Args:
            context_id: Context to update
            fields: Subset of node_uuid, wakeup_at, completed_at, results
            expected_version: Apply only if the stored version matches.
                None writes unconditionally (force-completion).

        Returns:
            The new version

        Raises:
            StaleContext: If expected_version does not match
            NotFound: If the context does not exist
            StorageError: On backend failure or unknown fields
        """
        pass

    @abstractmethod
    async def get_context(self, context_id: str) -> ExecutionContext | None:
        """Retrieve one context (unbound: uuid_map is None)."""
        pass

    @abstractmethod
    async def get_due_contexts(
        self, now: datetime, limit: int | None = None
    ) -> list[ExecutionContext]:
        """
        Contexts that are suspended, not completed, and due at now.

        Args:
            now: Current time (explicit parameter for testability)
            limit: Maximum number of contexts, earliest wakeup first

        Returns:
            Contexts ordered by wakeup_at ascending
        """
        pass

    @abstractmethod
    async def get_child_contexts(self, parent_id: str) -> list[ExecutionContext]:
        """Contexts entered as sub-flows of parent_id, oldest first."""
        pass

    @abstractmethod
    async def get_contact_contexts(
        self, contact_id: int, include_completed: bool = False
    ) -> list[ExecutionContext]:
        """Contexts of one contact, oldest first."""
        pass

    @abstractmethod
    async def get_next_wakeup_time(self) -> datetime | None:
        """
        Earliest wakeup_at across suspended, non-completed contexts.

        Used by Worker to sleep until the next context becomes due instead
        of polling on a fixed interval.
        """
        pass

    # ========================================================================
    # Utility Operations
    # ========================================================================

    @abstractmethod
    async def reset(self) -> None:
        """
        Clear all data (for testing/demos).

        Warning: Destructive operation - only use in testing!
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close storage connections and clean up resources.

        From Dave Cheney: "Never start a goroutine without knowing when it
        will stop" - storage connections must be explicitly closed, not
        left to garbage collection.
        """
        pass
