"""Redis-based flow store implementation.

Provides a Redis backend for distributed execution with true multi-machine
support. Unlike SQLite which requires shared filesystem access, Redis lets
workers and message handlers run on completely separate machines.

Data Structures (every key is prefixed with the store namespace):
- {ns}:flow_seq (STRING): Counter assigning flow ids
- {ns}:flows (ZSET): All flow ids (score = id)
- {ns}:flow:{id} (HASH): Flow identity and metadata
- {ns}:flow_by_uuid / {ns}:flow_by_shortcode (HASH): Secondary indexes
- {ns}:revisions:{id} (LIST): JSON revisions, newest first, so the list
  index is the revision number and index 0 is the live revision
- {ns}:context:{id} (HASH): Context row
- {ns}:wakeups (ZSET): Suspended, non-completed contexts (score = wakeup ms)
- {ns}:children:{parent_id} (ZSET): Sub-flow contexts (score = inserted ms)
- {ns}:contact:{contact_id} (ZSET): Contexts per contact (score = inserted ms)

Key Features:
- Lua script for compare-and-set context updates (optimistic concurrency)
- The wakeup index is maintained inside the same script, so it can never
  disagree with the row
- Namespacing: several deployments (or tenants) can share one Redis

Design: Adapter Pattern
Implements FlowStore for Redis, adapting a key-value store to the
FlowStore interface.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from uuid_extensions import uuid7

try:
    import redis.asyncio as redis
except ImportError:
    raise ImportError("redis-py is required for RedisFlowStore. Install with: pip install redis")

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

# Result codes of the update script
_UPDATED, _MISSING, _STALE = 0, 1, 2

_UPDATE_CONTEXT_SCRIPT = """
local key = KEYS[1]
local wakeups = KEYS[2]
local expected = ARGV[1]
local now = ARGV[2]
local context_id = ARGV[3]

if redis.call('EXISTS', key) == 0 then
    return {1, 0}
end

local version = tonumber(redis.call('HGET', key, 'version'))
if expected ~= '' and tonumber(expected) ~= version then
    return {2, version}
end

for i = 4, #ARGV, 2 do
    redis.call('HSET', key, ARGV[i], ARGV[i + 1])
end
redis.call('HSET', key, 'updated_at', now)
local new_version = redis.call('HINCRBY', key, 'version', 1)

local wakeup_at = redis.call('HGET', key, 'wakeup_at')
local completed_at = redis.call('HGET', key, 'completed_at')
if completed_at ~= '' or wakeup_at == '' then
    redis.call('ZREM', wakeups, context_id)
else
    redis.call('ZADD', wakeups, tonumber(wakeup_at), context_id)
end

return {0, new_version}
"""

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MILLISECOND = timedelta(milliseconds=1)


def _to_millis(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return str((value - _EPOCH) // _MILLISECOND)


def _from_millis(value: str | None) -> datetime | None:
    if not value:
        return None
    return _EPOCH + int(value) * _MILLISECOND


class RedisFlowStore(FlowStore):
    """Redis flow store using connection pooling.

    Design: Adapter Pattern
    Adapts Redis key-value store to FlowStore protocol.

    All dependencies (Redis connection) passed explicitly.

    Usage:
        store = RedisFlowStore("redis://localhost:6379", namespace="org-42")
        await store.connect()

        context = await store.get_context(context_id)
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        namespace: str = "pyrhoe",
        max_connections: int = 16,
    ):
        """Initialize Redis flow store.

        Default redis_url works for local development.

        Args:
            redis_url: Redis connection URL
            namespace: Prefix for every key this store touches
            max_connections: Maximum pool size
        """
        self._redis_url = redis_url
        self._namespace = namespace
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None
        self._update_script = None

    def __repr__(self) -> str:
        return f"RedisFlowStore({self._redis_url}, namespace={self._namespace!r})"

    async def connect(self) -> None:
        """Establish Redis connection pool and register the update script."""
        if self._redis is not None:
            return

        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
        )
        self._update_script = self._redis.register_script(_UPDATE_CONTEXT_SCRIPT)

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        """Raise immediately if connect() was not called."""
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    def _key(self, *parts: object) -> str:
        return ":".join([self._namespace, *(str(part) for part in parts)])

    # ========================================================================
    # Flow Operations
    # ========================================================================

    async def save_flow(self, definition: FlowDefinition) -> FlowDefinition:
        self._check_connected()

        by_uuid = self._key("flow_by_uuid")
        by_shortcode = self._key("flow_by_shortcode")

        for index, value in ((by_uuid, definition.uuid), (by_shortcode, definition.shortcode)):
            owner = await self._redis.hget(index, value)
            if owner is not None and int(owner) != definition.id:
                raise StorageError(
                    f"Flow uuid/shortcode already in use: "
                    f"uuid={definition.uuid}, shortcode={definition.shortcode}"
                )

        previous = None
        if definition.id is None:
            definition.id = await self._redis.incr(self._key("flow_seq"))
        else:
            previous = await self._redis.hgetall(self._key("flow", definition.id))

        async with self._redis.pipeline(transaction=True) as pipe:
            if previous:
                pipe.hdel(by_uuid, previous["uuid"])
                pipe.hdel(by_shortcode, previous["shortcode"])
            pipe.hset(
                self._key("flow", definition.id),
                mapping={
                    "id": definition.id,
                    "uuid": definition.uuid,
                    "shortcode": definition.shortcode,
                    "name": definition.name,
                    "language": definition.language,
                    "flow_type": definition.flow_type.value,
                    "version_number": definition.version_number,
                },
            )
            pipe.hset(by_uuid, definition.uuid, definition.id)
            pipe.hset(by_shortcode, definition.shortcode, definition.id)
            pipe.zadd(self._key("flows"), {str(definition.id): definition.id})
            await pipe.execute()

        return definition

    async def save_revision(
        self,
        flow_id: int,
        definition: dict[str, Any],
        status: RevisionStatus = RevisionStatus.PUBLISHED,
    ) -> FlowRevision:
        self._check_connected()

        if not await self._redis.exists(self._key("flow", flow_id)):
            raise StorageError(f"Flow not found: flow_id={flow_id}")

        now = datetime.now(UTC)
        record = json.dumps(
            {"status": status.value, "definition": definition, "inserted_at": _to_millis(now)}
        )
        # LPUSH shifts every older revision one index up: renumbering is free.
        await self._redis.lpush(self._key("revisions", flow_id), record)

        return FlowRevision(
            flow_id=flow_id,
            revision_number=LIVE_REVISION,
            definition=definition,
            status=status,
            inserted_at=now,
        )

    async def _resolve_flow_id(self, identifier: int | str | uuid.UUID) -> int | None:
        kind, value = split_identifier(identifier)
        if kind == "id":
            return value
        found = await self._redis.hget(self._key(f"flow_by_{kind}"), value)
        return int(found) if found is not None else None

    async def get_flow(self, identifier: int | str | uuid.UUID) -> FlowDefinition | None:
        self._check_connected()

        flow_id = await self._resolve_flow_id(identifier)
        if flow_id is None:
            return None

        data = await self._redis.hgetall(self._key("flow", flow_id))
        if not data:
            return None

        flow = self._parse_flow(data)
        records = await self._redis.lrange(self._key("revisions", flow_id), 0, -1)
        flow.revisions = [
            self._parse_revision(flow_id, number, record) for number, record in enumerate(records)
        ]
        return flow

    async def fetch_live_revision(self, flow_id: int) -> FlowRevision | None:
        self._check_connected()

        record = await self._redis.lindex(self._key("revisions", flow_id), LIVE_REVISION)
        if record is None:
            return None
        return self._parse_revision(flow_id, LIVE_REVISION, record)

    async def fetch_active_flows_with_live_revisions(
        self, flow_id: int | None = None
    ) -> list[tuple[FlowDefinition, dict[str, Any]]]:
        self._check_connected()

        if flow_id is None:
            flow_ids = [int(fid) for fid in await self._redis.zrange(self._key("flows"), 0, -1)]
        else:
            flow_ids = [flow_id]

        result = []
        for fid in flow_ids:
            data = await self._redis.hgetall(self._key("flow", fid))
            if not data:
                continue
            record = await self._redis.lindex(self._key("revisions", fid), LIVE_REVISION)
            if record is None:
                continue
            result.append((self._parse_flow(data), json.loads(record)["definition"]))
        return result

    # ========================================================================
    # Context Operations
    # ========================================================================

    async def insert_context(self, context: ExecutionContext) -> ExecutionContext:
        self._check_connected()

        if context.id is None:
            context.id = str(uuid7())

        key = self._key("context", context.id)
        if await self._redis.exists(key):
            raise StorageError(f"Context already exists: {context.id}")

        now = datetime.now(UTC)
        context.version = 1
        context.inserted_at = now
        context.updated_at = now
        score = int(_to_millis(now))

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=self._encode_context(context))
            pipe.zadd(self._key("contact", context.contact_id), {context.id: score})
            if context.parent_id is not None:
                pipe.zadd(self._key("children", context.parent_id), {context.id: score})
            if context.is_suspended:
                pipe.zadd(self._key("wakeups"), {context.id: int(_to_millis(context.wakeup_at))})
            await pipe.execute()

        return context

    async def update_context(
        self,
        context_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        self._check_connected()
        check_update_fields(fields)

        args: list[str] = [
            "" if expected_version is None else str(expected_version),
            _to_millis(datetime.now(UTC)),
            context_id,
        ]
        for name, value in fields.items():
            args.extend((name, self._encode_field(name, value)))

        try:
            code, version = await self._update_script(
                keys=[self._key("context", context_id), self._key("wakeups")],
                args=args,
            )
        except redis.RedisError as e:
            raise StorageError(f"Failed to update context {context_id}: {e}") from e

        if code == _MISSING:
            raise NotFound(f"Context not found: {context_id}", identifier=context_id)
        if code == _STALE:
            raise StaleContext(context_id, expected_version, version)
        return int(version)

    async def get_context(self, context_id: str) -> ExecutionContext | None:
        self._check_connected()

        data = await self._redis.hgetall(self._key("context", context_id))
        if not data:
            return None
        return self._decode_context(data)

    async def _load_contexts(self, context_ids: list[str]) -> list[ExecutionContext]:
        if not context_ids:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for context_id in context_ids:
                pipe.hgetall(self._key("context", context_id))
            rows = await pipe.execute()
        return [self._decode_context(row) for row in rows if row]

    async def get_due_contexts(
        self, now: datetime, limit: int | None = None
    ) -> list[ExecutionContext]:
        self._check_connected()

        if limit is None:
            context_ids = await self._redis.zrangebyscore(
                self._key("wakeups"), "-inf", int(_to_millis(now))
            )
        else:
            context_ids = await self._redis.zrangebyscore(
                self._key("wakeups"), "-inf", int(_to_millis(now)), start=0, num=limit
            )
        return await self._load_contexts(context_ids)

    async def get_child_contexts(self, parent_id: str) -> list[ExecutionContext]:
        self._check_connected()

        context_ids = await self._redis.zrange(self._key("children", parent_id), 0, -1)
        return await self._load_contexts(context_ids)

    async def get_contact_contexts(
        self, contact_id: int, include_completed: bool = False
    ) -> list[ExecutionContext]:
        self._check_connected()

        context_ids = await self._redis.zrange(self._key("contact", contact_id), 0, -1)
        contexts = await self._load_contexts(context_ids)
        if include_completed:
            return contexts
        return [c for c in contexts if not c.is_completed]

    async def get_next_wakeup_time(self) -> datetime | None:
        self._check_connected()

        earliest = await self._redis.zrange(self._key("wakeups"), 0, 0, withscores=True)
        if not earliest:
            return None
        return _from_millis(str(int(earliest[0][1])))

    # ========================================================================
    # Utility Operations
    # ========================================================================

    async def reset(self) -> None:
        """Delete every key in this store's namespace."""
        self._check_connected()

        keys = [key async for key in self._redis.scan_iter(match=f"{self._namespace}:*")]
        if keys:
            await self._redis.delete(*keys)

    # ========================================================================
    # Encoding
    # ========================================================================

    @staticmethod
    def _encode_field(name: str, value: Any) -> str:
        if name in ("wakeup_at", "completed_at", "inserted_at", "updated_at"):
            return _to_millis(value)
        if name == "results":
            return json.dumps(value)
        if value is None:
            return ""
        return str(value)

    def _encode_context(self, context: ExecutionContext) -> dict[str, str]:
        return {name: self._encode_field(name, value) for name, value in context.to_row().items()}

    @staticmethod
    def _decode_context(data: dict[str, str]) -> ExecutionContext:
        return ExecutionContext(
            id=data["id"],
            contact_id=int(data["contact_id"]),
            flow_id=int(data["flow_id"]),
            flow_uuid=data["flow_uuid"],
            node_uuid=data["node_uuid"],
            parent_id=data.get("parent_id") or None,
            wakeup_at=_from_millis(data.get("wakeup_at")),
            completed_at=_from_millis(data.get("completed_at")),
            results=json.loads(data.get("results") or "{}"),
            version=int(data["version"]),
            inserted_at=_from_millis(data.get("inserted_at")),
            updated_at=_from_millis(data.get("updated_at")),
        )

    @staticmethod
    def _parse_flow(data: dict[str, str]) -> FlowDefinition:
        return FlowDefinition(
            id=int(data["id"]),
            uuid=data["uuid"],
            shortcode=data["shortcode"],
            name=data["name"],
            language=data["language"],
            flow_type=FlowType(data["flow_type"]),
            version_number=data["version_number"],
        )

    @staticmethod
    def _parse_revision(flow_id: int, number: int, record: str) -> FlowRevision:
        payload = json.loads(record)
        return FlowRevision(
            flow_id=flow_id,
            revision_number=number,
            definition=payload["definition"],
            status=RevisionStatus(payload["status"]),
            inserted_at=_from_millis(payload["inserted_at"]),
        )
