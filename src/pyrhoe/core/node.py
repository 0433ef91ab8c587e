"""Graph building blocks: nodes, exits and actions.

Nodes never hold references to each other, only UUID strings. Traversal
goes through a NodeIndex (an arena of nodes plus a UUID → position map),
which keeps the graph free of reference cycles and cheap to share
read-only between every context running the same flow.

Design: Tagged Variants
Actions are data, tagged by their builder ``type`` (send_msg, enter_flow,
wait_for_response, ...). A host executor outside the engine interprets
them; adding a kind of action means adding a tag, not a subclass.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pyrhoe.core.errors import InvalidExit

__all__ = ["Action", "Exit", "Node", "NodeIndex"]


@dataclass(frozen=True)
class Action:
    """An opaque action attached to a node."""

    uuid: str
    type: str
    attrs: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, name: str, default: Any = None) -> Any:
        return self.attrs.get(name, default)


@dataclass(frozen=True)
class Exit:
    """An outgoing edge. No destination means the flow ends here."""

    uuid: str
    destination_uuid: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.destination_uuid is None


@dataclass(frozen=True)
class Node:
    """A unit of the flow graph: actions to run, then exits to follow."""

    uuid: str
    actions: tuple[Action, ...] = ()
    exits: tuple[Exit, ...] = ()
    router: Mapping[str, Any] | None = None
    """Builder routing block (cases, categories), opaque to the engine."""

    def exit_at(self, exit_index: int) -> Exit:
        """Return the exit at exit_index.

        Raises:
            InvalidExit: If the index is out of range. Negative indexes
                are rejected rather than counted from the end.
        """
        if exit_index < 0 or exit_index >= len(self.exits):
            raise InvalidExit(self.uuid, exit_index, len(self.exits))
        return self.exits[exit_index]

    def destination(self, exit_index: int) -> str | None:
        """UUID of the node behind the chosen exit, None if it ends the flow."""
        return self.exit_at(exit_index).destination_uuid


class NodeIndex(Mapping[str, Node]):
    """Read-only UUID → Node lookup backed by an ordered arena.

    Iteration follows authoring order. Lookup is O(1).
    """

    __slots__ = ("_nodes", "_positions")

    def __init__(self, nodes: tuple[Node, ...], positions: Mapping[str, int]):
        self._nodes = nodes
        self._positions = MappingProxyType(dict(positions))

    @classmethod
    def from_nodes(cls, nodes: tuple[Node, ...]) -> "NodeIndex":
        return cls(nodes, {node.uuid: position for position, node in enumerate(nodes)})

    def __getitem__(self, uuid: str) -> Node:
        return self._nodes[self._positions[uuid]]

    def __iter__(self) -> Iterator[str]:
        return iter(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def position(self, uuid: str) -> int:
        """Position of the node in authoring order."""
        return self._positions[uuid]

    def __repr__(self) -> str:
        return f"NodeIndex(size={len(self)})"
