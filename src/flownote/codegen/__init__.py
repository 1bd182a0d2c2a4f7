"""flownote.codegen

Source generation: literal formatting, per-node fragments and batch export.
"""

from .formatter import format_argument, format_value, is_bare_identifier, normalize_file_path, quote
from .graph_compiler import CycleError, compile_graph, topological_order
from .node_compiler import CompiledNode, build_node_call, compile_node

__all__ = [
    "format_argument",
    "format_value",
    "is_bare_identifier",
    "normalize_file_path",
    "quote",
    "CycleError",
    "compile_graph",
    "topological_order",
    "CompiledNode",
    "build_node_call",
    "compile_node",
]
