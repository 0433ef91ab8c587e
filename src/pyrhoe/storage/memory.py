"""In-memory storage implementation for pyrhoe.

Design Pattern: Adapter Pattern
InMemoryFlowStore adapts in-memory dictionaries to the FlowStore interface.

Instance is immediately usable after __init__. Rows are copied on the way
in and out, so callers holding a context object see the same staleness
they would against a real database.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import uuid
from datetime import UTC, datetime
from typing import Any

from uuid_extensions import uuid7

from pyrhoe.core.errors import NotFound, StaleContext
from pyrhoe.models import (
    LIVE_REVISION,
    ExecutionContext,
    FlowDefinition,
    FlowRevision,
    RevisionStatus,
)
from pyrhoe.storage.base import FlowStore, StorageError, check_update_fields, split_identifier


def _copy_context(context: ExecutionContext) -> ExecutionContext:
    return dataclasses.replace(context, results=copy.deepcopy(context.results), uuid_map=None)


class InMemoryFlowStore(FlowStore):
    """In-memory storage for testing.

    Can be substituted for SqliteFlowStore without changing client code.

    Usage:
        store = InMemoryFlowStore()
        flow = await store.save_flow(FlowDefinition(uuid=..., shortcode="help", name="Help"))
        await store.save_revision(flow.id, document)
    """

    def __init__(self):
        # Storage: {flow_id: FlowDefinition} (revisions kept separately)
        self._flows: dict[int, FlowDefinition] = {}

        # Storage: {flow_id: [FlowRevision]}, index == revision_number
        self._revisions: dict[int, list[FlowRevision]] = {}

        # Storage: {context_id: ExecutionContext}
        self._contexts: dict[str, ExecutionContext] = {}

        self._next_flow_id = 1

        # Lock for task-safety
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"InMemoryFlowStore(flows={len(self._flows)}, contexts={len(self._contexts)})"

    # ========================================================================
    # Flow Operations
    # ========================================================================

    async def save_flow(self, definition: FlowDefinition) -> FlowDefinition:
        async with self._lock:
            for flow in self._flows.values():
                if flow.id == definition.id:
                    continue
                if flow.uuid == definition.uuid or flow.shortcode == definition.shortcode:
                    raise StorageError(
                        f"Flow uuid/shortcode already in use: "
                        f"uuid={definition.uuid}, shortcode={definition.shortcode}"
                    )

            if definition.id is None:
                definition.id = self._next_flow_id
            self._next_flow_id = max(self._next_flow_id, definition.id + 1)

            self._flows[definition.id] = dataclasses.replace(definition, revisions=[])
            self._revisions.setdefault(definition.id, [])
            return definition

    async def save_revision(
        self,
        flow_id: int,
        definition: dict[str, Any],
        status: RevisionStatus = RevisionStatus.PUBLISHED,
    ) -> FlowRevision:
        async with self._lock:
            if flow_id not in self._flows:
                raise StorageError(f"Flow not found: flow_id={flow_id}")

            revisions = self._revisions[flow_id]
            for revision in revisions:
                revision.revision_number += 1

            live = FlowRevision(
                flow_id=flow_id,
                revision_number=LIVE_REVISION,
                definition=copy.deepcopy(definition),
                status=status,
            )
            revisions.insert(0, live)
            return live

    async def get_flow(self, identifier: int | str | uuid.UUID) -> FlowDefinition | None:
        kind, value = split_identifier(identifier)
        async with self._lock:
            for flow in self._flows.values():
                if getattr(flow, kind) == value:
                    return self._with_revisions(flow)
            return None

    def _with_revisions(self, flow: FlowDefinition) -> FlowDefinition:
        revisions = [
            dataclasses.replace(revision, definition=copy.deepcopy(revision.definition))
            for revision in self._revisions.get(flow.id, [])
        ]
        return dataclasses.replace(flow, revisions=revisions)

    async def fetch_live_revision(self, flow_id: int) -> FlowRevision | None:
        async with self._lock:
            for revision in self._revisions.get(flow_id, []):
                if revision.is_live:
                    return dataclasses.replace(
                        revision, definition=copy.deepcopy(revision.definition)
                    )
            return None

    async def fetch_active_flows_with_live_revisions(
        self, flow_id: int | None = None
    ) -> list[tuple[FlowDefinition, dict[str, Any]]]:
        async with self._lock:
            result = []
            for fid in sorted(self._flows):
                if flow_id is not None and fid != flow_id:
                    continue
                live = next((r for r in self._revisions.get(fid, []) if r.is_live), None)
                if live is None:
                    continue
                flow = self._with_revisions(self._flows[fid])
                result.append((flow, copy.deepcopy(live.definition)))
            return result

    # ========================================================================
    # Context Operations
    # ========================================================================

    async def insert_context(self, context: ExecutionContext) -> ExecutionContext:
        async with self._lock:
            if context.id is None:
                context.id = str(uuid7())
            elif context.id in self._contexts:
                raise StorageError(f"Context already exists: {context.id}")

            now = datetime.now(UTC)
            context.version = 1
            context.inserted_at = now
            context.updated_at = now
            self._contexts[context.id] = _copy_context(context)
            return context

    async def update_context(
        self,
        context_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        check_update_fields(fields)
        async with self._lock:
            stored = self._contexts.get(context_id)
            if stored is None:
                raise NotFound(f"Context not found: {context_id}", identifier=context_id)

            if expected_version is not None and stored.version != expected_version:
                raise StaleContext(context_id, expected_version, stored.version)

            values = copy.deepcopy(fields)
            updated = dataclasses.replace(
                stored,
                **values,
                version=stored.version + 1,
                updated_at=datetime.now(UTC),
            )
            self._contexts[context_id] = updated
            return updated.version

    async def get_context(self, context_id: str) -> ExecutionContext | None:
        async with self._lock:
            stored = self._contexts.get(context_id)
            return _copy_context(stored) if stored is not None else None

    async def get_due_contexts(
        self, now: datetime, limit: int | None = None
    ) -> list[ExecutionContext]:
        async with self._lock:
            due = sorted(
                (c for c in self._contexts.values() if c.is_due(now)),
                key=lambda c: c.wakeup_at,
            )
            if limit is not None:
                due = due[:limit]
            return [_copy_context(c) for c in due]

    async def get_child_contexts(self, parent_id: str) -> list[ExecutionContext]:
        async with self._lock:
            children = [c for c in self._contexts.values() if c.parent_id == parent_id]
            children.sort(key=lambda c: c.inserted_at)
            return [_copy_context(c) for c in children]

    async def get_contact_contexts(
        self, contact_id: int, include_completed: bool = False
    ) -> list[ExecutionContext]:
        async with self._lock:
            contexts = [
                c
                for c in self._contexts.values()
                if c.contact_id == contact_id and (include_completed or not c.is_completed)
            ]
            contexts.sort(key=lambda c: c.inserted_at)
            return [_copy_context(c) for c in contexts]

    async def get_next_wakeup_time(self) -> datetime | None:
        async with self._lock:
            wakeups = [c.wakeup_at for c in self._contexts.values() if c.is_suspended]
            return min(wakeups) if wakeups else None

    # ========================================================================
    # Utility Operations
    # ========================================================================

    async def reset(self) -> None:
        async with self._lock:
            self._flows.clear()
            self._revisions.clear()
            self._contexts.clear()
            self._next_flow_id = 1

    async def close(self) -> None:
        """Nothing to release."""
        pass
