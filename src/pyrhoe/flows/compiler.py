"""
Graph compiler: canonical builder document → CompiledFlow.

The compiler walks the document's node list once, in document order,
materialising every node with its actions and exits and inserting it into
the UUID index. Exit destinations are validated in a second pass over the
finished index, because forward references (an exit pointing at a node
defined later in the document) are legal.

Alongside the graph it builds the localization table: the document's
per-language overrides plus the default text of every translatable field,
keyed ``<item uuid>.<field>``.

All failures raise CompileError. They are local to the flow being
compiled; callers compiling many flows decide whether to skip or abort.
"""

import json
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import xxhash

from pyrhoe.core.compiled_flow import CompiledFlow
from pyrhoe.core.errors import CompileError
from pyrhoe.core.localization import Localization, content_key, flatten_localization, text_value
from pyrhoe.core.node import Action, Exit, Node, NodeIndex
from pyrhoe.models import FlowDefinition

logger = logging.getLogger(__name__)

__all__ = ["compile_flow", "document_checksum"]

_SKIP_FIELDS = frozenset({"uuid", "type", "exit_uuid", "category_uuid"})


def document_checksum(document: Mapping[str, Any]) -> int:
    """Stable 63-bit fingerprint of a canonical document."""
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    # Mask to 63 bits so the value fits a signed 64-bit column
    return xxhash.xxh64(encoded.encode("utf-8")).intdigest() & 0x7FFFFFFFFFFFFFFF


def compile_flow(definition: FlowDefinition, document: Mapping[str, Any]) -> CompiledFlow:
    """Compile a cleaned builder document into a CompiledFlow.

    Args:
        definition: Flow identity and metadata (id must be set)
        document: Canonical document, as returned by clean_definition()

    Returns:
        Read-only compiled graph. A document with an empty node list
        compiles to a legal, empty CompiledFlow.

    Raises:
        CompileError: If the document has no node list, a node or exit has
            no uuid, a node uuid repeats, or an exit points at a node the
            document does not define.
    """
    flow_id = definition.id

    if not isinstance(document, Mapping):
        raise CompileError(
            f"Flow document must be an object, got {type(document).__name__}", flow_id
        )

    raw_nodes = document.get("nodes")
    if not isinstance(raw_nodes, list):
        raise CompileError("Flow document has no node list", flow_id)

    nodes: list[Node] = []
    seen: set[str] = set()
    defaults: dict[str, str] = {}

    for position, node_json in enumerate(raw_nodes):
        node = _compile_node(node_json, position, flow_id)
        if node.uuid in seen:
            raise CompileError(f"Duplicate node uuid {node.uuid!r}", flow_id)
        seen.add(node.uuid)
        nodes.append(node)
        _collect_defaults(node, defaults)

    arena = tuple(nodes)
    uuid_map = NodeIndex.from_nodes(arena)

    # Post-pass: every destination must exist now that all nodes are known
    for node in arena:
        for exit_ in node.exits:
            if exit_.destination_uuid is not None and exit_.destination_uuid not in uuid_map:
                raise CompileError(
                    f"Exit {exit_.uuid!r} of node {node.uuid!r} points at unknown node "
                    f"{exit_.destination_uuid!r}",
                    flow_id,
                )

    language = definition.language or document.get("language")
    localization = Localization(
        languages=flatten_localization(document.get("localization")),
        defaults=defaults,
        default_language=language,
    )

    compiled = CompiledFlow(
        id=flow_id,
        uuid=definition.uuid,
        shortcode=definition.shortcode,
        name=definition.name,
        language=language,
        flow_type=definition.flow_type,
        version_number=definition.version_number,
        nodes=arena,
        uuid_map=uuid_map,
        localization=localization,
        checksum=document_checksum(document),
    )

    logger.debug(f"Compiled flow {flow_id} ({definition.shortcode}): {len(arena)} node(s)")
    return compiled


def _compile_node(node_json: Any, position: int, flow_id: Any) -> Node:
    if not isinstance(node_json, Mapping):
        raise CompileError(f"Node at position {position} is not an object", flow_id)

    node_uuid = node_json.get("uuid")
    if not node_uuid:
        raise CompileError(f"Node at position {position} has no uuid", flow_id)

    actions = tuple(_compile_action(a, node_uuid, flow_id) for a in node_json.get("actions") or [])
    exits = tuple(_compile_exit(e, node_uuid, flow_id) for e in node_json.get("exits") or [])

    router = node_json.get("router")
    if router is not None and not isinstance(router, Mapping):
        raise CompileError(f"Router of node {node_uuid!r} is not an object", flow_id)

    return Node(
        uuid=node_uuid,
        actions=actions,
        exits=exits,
        router=MappingProxyType(dict(router)) if router is not None else None,
    )


def _compile_action(action_json: Any, node_uuid: str, flow_id: Any) -> Action:
    if not isinstance(action_json, Mapping):
        raise CompileError(f"Action of node {node_uuid!r} is not an object", flow_id)

    attrs = {k: v for k, v in action_json.items() if k not in ("uuid", "type")}
    return Action(
        uuid=action_json.get("uuid") or "",
        type=action_json.get("type") or "",
        attrs=MappingProxyType(attrs),
    )


def _compile_exit(exit_json: Any, node_uuid: str, flow_id: Any) -> Exit:
    if not isinstance(exit_json, Mapping):
        raise CompileError(f"Exit of node {node_uuid!r} is not an object", flow_id)

    exit_uuid = exit_json.get("uuid")
    if not exit_uuid:
        raise CompileError(f"Exit of node {node_uuid!r} has no uuid", flow_id)

    return Exit(uuid=exit_uuid, destination_uuid=exit_json.get("destination_uuid") or None)


def _collect_defaults(node: Node, defaults: dict[str, str]) -> None:
    """Record default text of translatable fields (actions, router cases and categories)."""
    items: list[Mapping[str, Any]] = [{"uuid": a.uuid, **a.attrs} for a in node.actions]
    if node.router is not None:
        for block in ("cases", "categories"):
            items.extend(i for i in node.router.get(block) or [] if isinstance(i, Mapping))

    for item in items:
        item_uuid = item.get("uuid")
        if not item_uuid:
            continue
        for field_name, value in item.items():
            if field_name in _SKIP_FIELDS:
                continue
            text = text_value(value)
            if text is not None:
                defaults[content_key(item_uuid, field_name)] = text
