"""flownote.core

Data model, persisted metadata keys and configuration.
"""

from .config import FlowNoteConfig
from .models import (
    ColumnInfo,
    ConnectResult,
    FlowEdge,
    FlowNode,
    FlowNoteError,
    NodeSchema,
    NodeStatus,
    ParamRole,
    ParamSpec,
    PortSpec,
    Position,
    SchemaError,
    UnitState,
    edge_from_dict,
    edges_from_raw,
    schema_from_dict,
)

__all__ = [
    "FlowNoteConfig",
    "ColumnInfo",
    "ConnectResult",
    "FlowEdge",
    "FlowNode",
    "FlowNoteError",
    "NodeSchema",
    "NodeStatus",
    "ParamRole",
    "ParamSpec",
    "PortSpec",
    "Position",
    "SchemaError",
    "UnitState",
    "edge_from_dict",
    "edges_from_raw",
    "schema_from_dict",
]
