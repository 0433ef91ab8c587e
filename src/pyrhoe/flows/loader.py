"""Definition loading: fetch the live revision and strip builder metadata."""

import logging
from collections.abc import Mapping
from typing import Any

from pyrhoe.core.errors import NotFound
from pyrhoe.storage.base import FlowStore

logger = logging.getLogger(__name__)

__all__ = ["DefinitionLoader", "clean_definition"]


def clean_definition(document: Mapping[str, Any]) -> dict[str, Any]:
    """Return the canonical body of a builder document.

    The builder sometimes wraps the body under a "definition" key; unwrap
    it when present. The "_ui" layout block is always dropped. The input
    is never mutated.
    """
    body = document.get("definition", document)
    if not isinstance(body, Mapping):
        # Not an envelope after all, e.g. a scalar "definition" field.
        body = document
    return {key: value for key, value in body.items() if key != "_ui"}


class DefinitionLoader:
    """Reads live revisions from a FlowStore."""

    def __init__(self, store: FlowStore):
        self._store = store

    async def load_definition(self, flow_id: int) -> dict[str, Any]:
        """Fetch and clean the live revision of flow_id.

        Raises:
            NotFound: If the flow has no revision numbered 0
        """
        revision = await self._store.fetch_live_revision(flow_id)
        if revision is None:
            raise NotFound(f"No live revision for flow_id={flow_id}", identifier=flow_id)

        logger.debug(f"Loaded live revision for flow_id={flow_id}")
        return clean_definition(revision.definition)
