"""flownote.sync.resolver

Derived node fields: reading persisted metadata leniently, assigning missing
identity fields (id, number, output variables, position), status and labels.

Readers never raise: malformed metadata falls back to defaults. The `ensure_*`
helpers stage writes on a `DocumentTransaction` only when a value is missing.
"""

from __future__ import annotations

import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..core import keys
from ..core.config import FlowNoteConfig
from ..core.models import (
    ColumnMap,
    FlowEdge,
    NodeSchema,
    NodeStatus,
    Position,
    column_map_from_raw,
    schema_from_dict,
)
from ..storage.base import DocumentTransaction

UNNAMED_LABEL = "(Unnamed Step)"

RUN_STATE_TAGS: Dict[str, NodeStatus] = {
    "running": NodeStatus.RUNNING,
    "calculating": NodeStatus.RUNNING,
    "success": NodeStatus.SUCCESS,
    "ready": NodeStatus.SUCCESS,
    "failed": NodeStatus.FAILED,
    "error": NodeStatus.FAILED,
}

_UNSAFE_PORT_RE = re.compile(r"[^a-zA-Z0-9_]+")


def read_schema(metadata: Dict[str, Any]) -> Optional[NodeSchema]:
    return schema_from_dict(metadata.get(keys.SCHEMA) if isinstance(metadata, dict) else None)


def read_values(metadata: Dict[str, Any]) -> Dict[str, Any]:
    return keys.get_dict(metadata, keys.VALUES)


def read_output_variables(metadata: Dict[str, Any]) -> Dict[str, str]:
    raw = keys.get_dict(metadata, keys.OUTPUT_VARS)
    return {str(k): v for k, v in raw.items() if isinstance(v, str) and v}


def read_output_columns(metadata: Dict[str, Any]) -> ColumnMap:
    return column_map_from_raw(metadata.get(keys.OUTPUT_COLUMNS) if isinstance(metadata, dict) else None)


def _coord(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def read_position(metadata: Dict[str, Any]) -> Optional[Position]:
    raw = keys.get_dict(metadata, keys.POSITION)
    x, y = _coord(raw.get("x")), _coord(raw.get("y"))
    if x is None or y is None:
        return None
    return Position(x, y)


def output_variable_name(number: int, port: str) -> str:
    safe = _UNSAFE_PORT_RE.sub("_", str(port))
    return f"n{number:02d}_{safe}"


def ensure_node_id(tx: DocumentTransaction, unit_id: str, taken: Optional[set] = None) -> str:
    """Return the unit's node id, assigning a fresh one if missing or duplicated."""
    node_id = keys.get_str(tx.unit_metadata(unit_id), keys.NODE_ID)
    if node_id and (taken is None or node_id not in taken):
        return node_id
    node_id = str(uuid.uuid4())
    tx.set_unit_metadata(unit_id, keys.NODE_ID, node_id)
    return node_id


def _max_node_number(tx: DocumentTransaction) -> int:
    return max((keys.get_int(u.metadata, keys.NODE_NUMBER) for u in tx.units()), default=0)


def ensure_node_number(tx: DocumentTransaction, unit_id: str) -> int:
    """Return the unit's sequence number, drawing a new one from the document counter.

    Numbers are never recomputed. The counter never hands out a number at or
    below one already in use, even if the persisted counter was reset.
    """
    number = keys.get_int(tx.unit_metadata(unit_id), keys.NODE_NUMBER)
    if number:
        return number
    seq = keys.get_int(tx.document_metadata(), keys.NUMBER_SEQ) or 1
    number = max(seq, _max_node_number(tx) + 1)
    tx.set_unit_metadata(unit_id, keys.NODE_NUMBER, number)
    tx.set_document_metadata(keys.NUMBER_SEQ, number + 1)
    return number


def ensure_output_variables(tx: DocumentTransaction, unit_id: str, schema: Optional[NodeSchema], number: int) -> Dict[str, str]:
    """Fill in variables for output ports that have none; existing names are kept."""
    current = read_output_variables(tx.unit_metadata(unit_id))
    if schema is None or schema.is_free:
        return current
    updated = dict(current)
    for port in schema.outputs:
        if port.name not in updated:
            updated[port.name] = output_variable_name(number, port.name)
    if updated != current:
        tx.set_unit_metadata(unit_id, keys.OUTPUT_VARS, updated)
    return updated


def default_position(existing: Iterable[Position], config: FlowNoteConfig) -> Position:
    ys = [p.y for p in existing]
    if not ys:
        return Position(config.layout_x, config.layout_y)
    return Position(config.layout_x, max(ys) + config.layout_spacing)


def ensure_position(tx: DocumentTransaction, unit_id: str, placed: Sequence[Position], config: FlowNoteConfig) -> Position:
    pos = read_position(tx.unit_metadata(unit_id))
    if pos is not None:
        return pos
    pos = default_position(placed, config)
    tx.set_unit_metadata(unit_id, keys.POSITION, pos.to_dict())
    return pos


def resolve_status(
    schema: Optional[NodeSchema],
    run_state: Any,
    node_id: str,
    edges: Sequence[FlowEdge],
) -> NodeStatus:
    if schema is None or schema.is_free:
        return NodeStatus.UNCONFIGURED
    tag = run_state.strip().lower() if isinstance(run_state, str) else ""
    if tag in RUN_STATE_TAGS:
        return RUN_STATE_TAGS[tag]
    connected = {e.target_port for e in edges if e.target_id == node_id}
    if all(name in connected for name in schema.required_inputs()):
        return NodeStatus.CONFIGURED
    return NodeStatus.UNCONFIGURED


def infer_label(schema: Optional[NodeSchema], source: str, max_length: int = 20) -> str:
    if schema is not None and not schema.is_free and schema.name:
        return schema.name
    text = str(source or "")
    if not text.strip():
        return UNNAMED_LABEL
    first = next((line.strip() for line in text.splitlines() if line.strip()), "")
    first = first.lstrip("#").strip() or UNNAMED_LABEL
    if len(first) > max_length:
        return first[:max_length] + "..."
    return first


def input_bindings(
    node_id: str,
    edges: Sequence[FlowEdge],
    output_vars: Dict[str, Dict[str, str]],
) -> Dict[str, Optional[str]]:
    """Map each connected input name to the upstream variable (first edge wins)."""
    bindings: Dict[str, Optional[str]] = {}
    for e in edges:
        if e.target_id != node_id or e.target_port in bindings:
            continue
        bindings[e.target_port] = output_vars.get(e.source_id, {}).get(e.source_port)
    return bindings


def input_columns(
    node_id: str,
    edges: Sequence[FlowEdge],
    output_columns: Dict[str, ColumnMap],
) -> ColumnMap:
    """Columns flowing into each input port (merged when several edges feed one port)."""
    out: ColumnMap = {}
    for e in edges:
        if e.target_id != node_id:
            continue
        cols = output_columns.get(e.source_id, {}).get(e.source_port)
        if cols:
            merged: List = out.setdefault(e.target_port, [])
            merged.extend(cols)
    return out
