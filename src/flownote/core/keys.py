"""Persisted metadata keys.

FlowNote keeps its state inside the host document instead of a side file:

- per-unit keys live in each unit's metadata mapping,
- document keys live in the document-level metadata mapping.

Hosts that inspect notebooks directly (nbformat tooling, git diffs) see these
names, so they are part of the persisted format and must not change.
"""

from __future__ import annotations

from typing import Any, Dict, List

# Per-unit metadata
NODE_ID = "node_id"
SCHEMA = "flow_schema"
VALUES = "flow_values"
OUTPUT_VARS = "flow_output_vars"
OUTPUT_COLUMNS = "flow_output_columns"
POSITION = "flow_position"
NODE_NUMBER = "flow_node_number"
RUN_STATE = "flow_status"

# Document metadata
EDGES = "flow_edges"
NUMBER_SEQ = "flow_number_seq"

UNIT_KEYS = (NODE_ID, SCHEMA, VALUES, OUTPUT_VARS, OUTPUT_COLUMNS, POSITION, NODE_NUMBER, RUN_STATE)
DOCUMENT_KEYS = (EDGES, NUMBER_SEQ)


def get_dict(metadata: Dict[str, Any], key: str) -> Dict[str, Any]:
    """Return a shallow copy of a dict-valued key (malformed/missing -> {})."""
    value = metadata.get(key) if isinstance(metadata, dict) else None
    return dict(value) if isinstance(value, dict) else {}


def get_list(metadata: Dict[str, Any], key: str) -> List[Any]:
    value = metadata.get(key) if isinstance(metadata, dict) else None
    return list(value) if isinstance(value, list) else []


def get_str(metadata: Dict[str, Any], key: str) -> str:
    value = metadata.get(key) if isinstance(metadata, dict) else None
    return value.strip() if isinstance(value, str) else ""


def get_int(metadata: Dict[str, Any], key: str) -> int:
    """Positive int or 0 (bools and non-integers are rejected)."""
    value = metadata.get(key) if isinstance(metadata, dict) else None
    if isinstance(value, bool):
        return 0
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, float) and value.is_integer() and value > 0:
        return int(value)
    return 0
