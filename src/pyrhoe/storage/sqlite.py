"""SQLite-backed storage implementation for pyrhoe.

Design Pattern: Adapter Pattern
SqliteFlowStore adapts an SQLite database to the FlowStore interface.

Complex database logic is isolated here, not scattered across the application.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- Conditional UPDATE (WHERE version = ?) for optimistic concurrency
- Indexes on flow_contexts(wakeup_at) and (completed_at) for scheduler scans
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite
from uuid_extensions import uuid7

from pyrhoe.core.errors import NotFound, StaleContext
from pyrhoe.models import (
    LIVE_REVISION,
    ExecutionContext,
    FlowDefinition,
    FlowRevision,
    FlowType,
    RevisionStatus,
)
from pyrhoe.storage.base import FlowStore, StorageError, check_update_fields, split_identifier

_CONTEXT_COLUMNS = """
    id, contact_id, flow_id, flow_uuid, node_uuid, parent_id,
    wakeup_at, completed_at, results, version, inserted_at, updated_at
"""

_FLOW_COLUMNS = "id, uuid, shortcode, name, language, flow_type, version_number"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MILLISECOND = timedelta(milliseconds=1)


def _to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // _MILLISECOND


def _from_millis(value: int | None) -> datetime | None:
    if value is None:
        return None
    return _EPOCH + value * _MILLISECOND


class SqliteFlowStore(FlowStore):
    """SQLite-backed durable storage.

    Design Principles Applied:
    - Single Responsibility: Only handles persistence (doesn't execute logic)
    - Dependency Inversion: Implements FlowStore protocol

    After __init__, the instance is not yet usable. Call connect() first.
    This follows asyncio best practices (no async in __init__).

    Usage:
        store = SqliteFlowStore("flows.db")
        await store.connect()
        try:
            await store.insert_context(...)
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize multi-statement writes

    @classmethod
    async def in_memory(cls) -> SqliteFlowStore:
        """
        Create an in-memory SQLite storage for testing.

        Example:
            store = await SqliteFlowStore.in_memory()
            # Ready to use immediately
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteFlowStore(in-memory)"
        return f"SqliteFlowStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema.

        Pattern: Template Method
        Fixed initialization sequence:
        1. Open connection
        2. Enable WAL mode
        3. Create tables
        4. Create indexes
        """
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode, explicit BEGIN where needed
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()

        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")
        await self._connection.execute("PRAGMA foreign_keys=ON")

        await self._create_schema()

    async def _create_schema(self) -> None:
        """Create database tables and indexes.

        Schema design:
        - flows: identity and metadata, addressable by id, uuid, shortcode
        - flow_revisions: JSON documents, revision_number 0 is live
        - flow_contexts: durable execution state, INTEGER millisecond timestamps
        """
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS flows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                uuid TEXT NOT NULL UNIQUE,
                shortcode TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                language TEXT NOT NULL,
                flow_type TEXT NOT NULL,
                version_number TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS flow_revisions (
                flow_id INTEGER NOT NULL REFERENCES flows(id) ON DELETE CASCADE,
                revision_number INTEGER NOT NULL,
                status TEXT NOT NULL,
                definition TEXT NOT NULL,
                inserted_at INTEGER NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_flow_revisions_flow_id
            ON flow_revisions(flow_id)
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_flow_revisions_status
            ON flow_revisions(status)
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS flow_contexts (
                id TEXT PRIMARY KEY,
                contact_id INTEGER NOT NULL,
                flow_id INTEGER NOT NULL,
                flow_uuid TEXT NOT NULL,
                node_uuid TEXT NOT NULL,
                parent_id TEXT,
                wakeup_at INTEGER,
                completed_at INTEGER,
                results TEXT NOT NULL DEFAULT '{}',
                version INTEGER NOT NULL DEFAULT 1,
                inserted_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_flow_contexts_wakeup_at
            ON flow_contexts(wakeup_at)
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_flow_contexts_completed_at
            ON flow_contexts(completed_at)
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_flow_contexts_parent_id
            ON flow_contexts(parent_id)
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_flow_contexts_contact_id
            ON flow_contexts(contact_id)
        """)

    def _check_connected(self) -> None:
        """Raise immediately if connect() was not called."""
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    # ========================================================================
    # Flow Operations
    # ========================================================================

    async def save_flow(self, definition: FlowDefinition) -> FlowDefinition:
        self._check_connected()

        params = (
            definition.uuid,
            definition.shortcode,
            definition.name,
            definition.language,
            definition.flow_type.value,
            definition.version_number,
        )

        async with self._lock:
            try:
                if definition.id is None:
                    cursor = await self._connection.execute(
                        """
                        INSERT INTO flows (uuid, shortcode, name, language, flow_type, version_number)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """,
                        params,
                    )
                    definition.id = cursor.lastrowid
                else:
                    await self._connection.execute(
                        """
                        INSERT INTO flows (id, uuid, shortcode, name, language, flow_type, version_number)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            uuid = excluded.uuid,
                            shortcode = excluded.shortcode,
                            name = excluded.name,
                            language = excluded.language,
                            flow_type = excluded.flow_type,
                            version_number = excluded.version_number
                    """,
                        (definition.id, *params),
                    )
            except aiosqlite.IntegrityError as e:
                raise StorageError(f"Failed to save flow {definition.uuid}: {e}") from e

        return definition

    async def save_revision(
        self,
        flow_id: int,
        definition: dict[str, Any],
        status: RevisionStatus = RevisionStatus.PUBLISHED,
    ) -> FlowRevision:
        self._check_connected()

        now = datetime.now(UTC)

        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT 1 FROM flows WHERE id = ?", (flow_id,)
            )
            if await cursor.fetchone() is None:
                raise StorageError(f"Flow not found: flow_id={flow_id}")

            # Renumber and insert in one transaction so readers never see
            # a flow with two live revisions or none.
            await self._connection.execute("BEGIN IMMEDIATE")
            try:
                await self._connection.execute(
                    """
                    UPDATE flow_revisions
                    SET revision_number = revision_number + 1
                    WHERE flow_id = ?
                """,
                    (flow_id,),
                )
                await self._connection.execute(
                    """
                    INSERT INTO flow_revisions (flow_id, revision_number, status, definition, inserted_at)
                    VALUES (?, ?, ?, ?, ?)
                """,
                    (flow_id, LIVE_REVISION, status.value, json.dumps(definition), _to_millis(now)),
                )
                await self._connection.execute("COMMIT")
            except Exception as e:
                await self._connection.execute("ROLLBACK")
                raise StorageError(f"Failed to save revision for flow {flow_id}: {e}") from e

        return FlowRevision(
            flow_id=flow_id,
            revision_number=LIVE_REVISION,
            definition=definition,
            status=status,
            inserted_at=now,
        )

    async def get_flow(self, identifier: int | str | uuid.UUID) -> FlowDefinition | None:
        self._check_connected()

        kind, value = split_identifier(identifier)

        # kind comes from split_identifier, never from user input
        cursor = await self._connection.execute(
            f"SELECT {_FLOW_COLUMNS} FROM flows WHERE {kind} = ?",
            (value,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        flow = self._row_to_flow(row)
        flow.revisions = await self._get_revisions(flow.id)
        return flow

    async def _get_revisions(self, flow_id: int) -> list[FlowRevision]:
        cursor = await self._connection.execute(
            """
            SELECT flow_id, revision_number, status, definition, inserted_at
            FROM flow_revisions
            WHERE flow_id = ?
            ORDER BY revision_number ASC
        """,
            (flow_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_revision(row) for row in rows]

    async def fetch_live_revision(self, flow_id: int) -> FlowRevision | None:
        self._check_connected()

        cursor = await self._connection.execute(
            """
            SELECT flow_id, revision_number, status, definition, inserted_at
            FROM flow_revisions
            WHERE flow_id = ? AND revision_number = ?
        """,
            (flow_id, LIVE_REVISION),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_revision(row)

    async def fetch_active_flows_with_live_revisions(
        self, flow_id: int | None = None
    ) -> list[tuple[FlowDefinition, dict[str, Any]]]:
        self._check_connected()

        query = """
            SELECT f.id, f.uuid, f.shortcode, f.name, f.language, f.flow_type,
                   f.version_number, fr.definition
            FROM flows f
            JOIN flow_revisions fr ON fr.flow_id = f.id
            WHERE fr.revision_number = ?
        """
        params: tuple[Any, ...] = (LIVE_REVISION,)

        if flow_id is not None:
            query += " AND f.id = ?"
            params += (flow_id,)

        query += " ORDER BY f.id ASC"

        cursor = await self._connection.execute(query, params)
        rows = await cursor.fetchall()
        return [(self._row_to_flow(row[:7]), json.loads(row[7])) for row in rows]

    # ========================================================================
    # Context Operations
    # ========================================================================

    async def insert_context(self, context: ExecutionContext) -> ExecutionContext:
        self._check_connected()

        if context.id is None:
            context.id = str(uuid7())

        now = datetime.now(UTC)
        context.version = 1
        context.inserted_at = now
        context.updated_at = now

        try:
            await self._connection.execute(
                f"""
                INSERT INTO flow_contexts ({_CONTEXT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    context.id,
                    context.contact_id,
                    context.flow_id,
                    context.flow_uuid,
                    context.node_uuid,
                    context.parent_id,
                    _to_millis(context.wakeup_at),
                    _to_millis(context.completed_at),
                    json.dumps(context.results),
                    context.version,
                    _to_millis(now),
                    _to_millis(now),
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise StorageError(f"Failed to insert context {context.id}: {e}") from e

        return context

    async def update_context(
        self,
        context_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        """Atomically update a context row.

        Design Pattern: Optimistic Concurrency Control
        UPDATE ... WHERE version = ? succeeds for exactly one of two racing
        writers; the loser sees rowcount 0 and gets StaleContext.
        """
        self._check_connected()
        check_update_fields(fields)

        assignments = []
        params: list[Any] = []
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            if name in ("wakeup_at", "completed_at"):
                params.append(_to_millis(value))
            elif name == "results":
                params.append(json.dumps(value))
            else:
                params.append(value)

        assignments.append("version = version + 1")
        assignments.append("updated_at = ?")
        params.append(_to_millis(datetime.now(UTC)))

        query = f"UPDATE flow_contexts SET {', '.join(assignments)} WHERE id = ?"
        params.append(context_id)
        if expected_version is not None:
            query += " AND version = ?"
            params.append(expected_version)
        query += " RETURNING version"

        async with self._lock:
            cursor = await self._connection.execute(query, params)
            row = await cursor.fetchone()
            await cursor.close()

            if row is not None:
                return row[0]

            cursor = await self._connection.execute(
                "SELECT version FROM flow_contexts WHERE id = ?", (context_id,)
            )
            current = await cursor.fetchone()

        if current is None:
            raise NotFound(f"Context not found: {context_id}", identifier=context_id)
        raise StaleContext(context_id, expected_version, current[0])

    async def get_context(self, context_id: str) -> ExecutionContext | None:
        self._check_connected()

        cursor = await self._connection.execute(
            f"SELECT {_CONTEXT_COLUMNS} FROM flow_contexts WHERE id = ?",
            (context_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_context(row)

    async def get_due_contexts(
        self, now: datetime, limit: int | None = None
    ) -> list[ExecutionContext]:
        self._check_connected()

        query = f"""
            SELECT {_CONTEXT_COLUMNS}
            FROM flow_contexts
            WHERE completed_at IS NULL
              AND wakeup_at IS NOT NULL
              AND wakeup_at <= ?
            ORDER BY wakeup_at ASC
        """
        params: tuple[Any, ...] = (_to_millis(now),)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)

        cursor = await self._connection.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_context(row) for row in rows]

    async def get_child_contexts(self, parent_id: str) -> list[ExecutionContext]:
        self._check_connected()

        cursor = await self._connection.execute(
            f"""
            SELECT {_CONTEXT_COLUMNS}
            FROM flow_contexts
            WHERE parent_id = ?
            ORDER BY inserted_at ASC, id ASC
        """,
            (parent_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_context(row) for row in rows]

    async def get_contact_contexts(
        self, contact_id: int, include_completed: bool = False
    ) -> list[ExecutionContext]:
        self._check_connected()

        query = f"SELECT {_CONTEXT_COLUMNS} FROM flow_contexts WHERE contact_id = ?"
        if not include_completed:
            query += " AND completed_at IS NULL"
        query += " ORDER BY inserted_at ASC, id ASC"

        cursor = await self._connection.execute(query, (contact_id,))
        rows = await cursor.fetchall()
        return [self._row_to_context(row) for row in rows]

    async def get_next_wakeup_time(self) -> datetime | None:
        self._check_connected()

        cursor = await self._connection.execute("""
            SELECT MIN(wakeup_at)
            FROM flow_contexts
            WHERE completed_at IS NULL AND wakeup_at IS NOT NULL
        """)
        row = await cursor.fetchone()
        return _from_millis(row[0]) if row else None

    # ========================================================================
    # Utility Operations
    # ========================================================================

    async def reset(self) -> None:
        self._check_connected()
        async with self._lock:
            await self._connection.execute("DELETE FROM flow_contexts")
            await self._connection.execute("DELETE FROM flow_revisions")
            await self._connection.execute("DELETE FROM flows")

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    # ========================================================================
    # Row mapping
    # ========================================================================

    @staticmethod
    def _row_to_flow(row: tuple) -> FlowDefinition:
        return FlowDefinition(
            id=row[0],
            uuid=row[1],
            shortcode=row[2],
            name=row[3],
            language=row[4],
            flow_type=FlowType(row[5]),
            version_number=row[6],
        )

    @staticmethod
    def _row_to_revision(row: tuple) -> FlowRevision:
        return FlowRevision(
            flow_id=row[0],
            revision_number=row[1],
            status=RevisionStatus(row[2]),
            definition=json.loads(row[3]),
            inserted_at=_from_millis(row[4]),
        )

    @staticmethod
    def _row_to_context(row: tuple) -> ExecutionContext:
        return ExecutionContext(
            id=row[0],
            contact_id=row[1],
            flow_id=row[2],
            flow_uuid=row[3],
            node_uuid=row[4],
            parent_id=row[5],
            wakeup_at=_from_millis(row[6]),
            completed_at=_from_millis(row[7]),
            results=json.loads(row[8]),
            version=row[9],
            inserted_at=_from_millis(row[10]),
            updated_at=_from_millis(row[11]),
        )
