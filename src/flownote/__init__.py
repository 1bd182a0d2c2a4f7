"""
FlowNote

Visual data-flow editing on top of notebook documents.

Each configured notebook unit is one node of a directed graph; FlowNote keeps
the graph in the document's metadata and regenerates each node's code from its
algorithm schema and parameters:
- per-node code generation (`compile_node`)
- whole-graph export to one program (`compile_graph`)
- a synchronizer that applies graph edits to a document store in atomic passes
"""

from .codegen import CycleError, compile_graph, compile_node, format_value
from .core.config import FlowNoteConfig
from .core.models import (
    ColumnInfo,
    ConnectResult,
    FlowEdge,
    FlowNode,
    FlowNoteError,
    NodeSchema,
    NodeStatus,
    SchemaError,
    UnitState,
    schema_from_dict,
)
from .runtime import ExecutionReply, RuntimeClient
from .storage import DocumentStore, InMemoryDocumentStore, JsonNotebookStore
from .sync import FlowGraph, RuntimeIntrospector, UnitSynchronizer

__version__ = "0.1.0"

__all__ = [
    # Code generation
    "CycleError",
    "compile_graph",
    "compile_node",
    "format_value",
    # Models
    "ColumnInfo",
    "ConnectResult",
    "FlowEdge",
    "FlowNode",
    "FlowNoteConfig",
    "FlowNoteError",
    "NodeSchema",
    "NodeStatus",
    "SchemaError",
    "UnitState",
    "schema_from_dict",
    # Runtime
    "ExecutionReply",
    "RuntimeClient",
    # Storage backends
    "DocumentStore",
    "InMemoryDocumentStore",
    "JsonNotebookStore",
    # Synchronization
    "FlowGraph",
    "RuntimeIntrospector",
    "UnitSynchronizer",
]
