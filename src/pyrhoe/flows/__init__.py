"""Flow loading pipeline: live revision → canonical document → CompiledFlow."""

from pyrhoe.flows.compiler import compile_flow, document_checksum
from pyrhoe.flows.loader import DefinitionLoader, clean_definition
from pyrhoe.flows.registry import FlowRegistry

__all__ = [
    "DefinitionLoader",
    "FlowRegistry",
    "clean_definition",
    "compile_flow",
    "document_checksum",
]
