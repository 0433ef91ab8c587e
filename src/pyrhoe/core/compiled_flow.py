"""CompiledFlow: the navigable, read-only graph built from a live revision.

A CompiledFlow is rebuilt from a FlowDefinition and its live revision and
then shared by every context running that flow. Nothing mutates it after
construction, so concurrent contexts read it without locking.
"""

from dataclasses import dataclass, field

from pyrhoe.core.localization import Localization
from pyrhoe.core.node import Node, NodeIndex
from pyrhoe.models import FlowType

__all__ = ["CompiledFlow"]


@dataclass(frozen=True)
class CompiledFlow:
    """Compiled flow graph.

    ``nodes`` keeps authoring order. That order only decides the entry
    node (the first one); execution order comes from following exits.
    """

    id: int
    uuid: str
    shortcode: str
    name: str
    language: str
    flow_type: FlowType
    version_number: str
    nodes: tuple[Node, ...]
    uuid_map: NodeIndex
    localization: Localization = field(default_factory=Localization)
    checksum: int = 0
    """xxhash64 of the canonical document this graph was compiled from."""

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    @property
    def entry_node(self) -> Node | None:
        """First node in authoring order, None for an empty flow."""
        return self.nodes[0] if self.nodes else None

    def get_node(self, uuid: str) -> Node | None:
        return self.uuid_map.get(uuid)

    def localize(self, language: str | None, key: str) -> str:
        return self.localization.localize(language, key)

    @property
    def keys(self) -> tuple[object, object, object]:
        """The three registry keys of this flow: id, uuid and shortcode."""
        return (self.id, self.uuid, self.shortcode)

    def __repr__(self) -> str:
        return (
            f"CompiledFlow(id={self.id!r}, uuid={self.uuid!r}, "
            f"shortcode={self.shortcode!r}, nodes={len(self.nodes)})"
        )
