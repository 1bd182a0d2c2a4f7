"""Stdlib-only models for FlowNote graphs.

These are intentionally permissive when reading persisted or catalog data:
- unknown/extra fields are ignored,
- malformed entries are skipped rather than raised,
- enum-like fields are normalized from strings.

Everything that is persisted goes through `to_dict()` so the document only ever
holds JSON-safe values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

FREE_SCHEMA_ID = "free_cell"
FREE_CATEGORY = "free"


class FlowNoteError(Exception):
    """Base class for FlowNote errors."""


class SchemaError(FlowNoteError, ValueError):
    """Raised when catalog schema data is invalid (strict parsing only)."""


class ParamRole(str, Enum):
    INPUT = "input"
    OUTPUT = "output"
    PARAMETER = "parameter"


class NodeStatus(str, Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class UnitState(str, Enum):
    """Synchronization state of one unit (see UnitSynchronizer)."""

    UNBOUND = "unbound"
    BOUND = "bound"
    COMPILED = "compiled"
    STALE = "stale"


@dataclass(frozen=True)
class PortSpec:
    name: str
    type: str = "any"
    required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "type": self.type}
        if not self.required:
            out["required"] = False
        return out


@dataclass(frozen=True)
class ParamSpec:
    name: str
    type: str = "str"
    label: str = ""
    role: ParamRole = ParamRole.PARAMETER
    default: Any = None
    has_default: bool = False
    widget: Optional[str] = None
    options: Optional[List[Any]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    description: str = ""
    priority: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "label": self.label or self.name,
            "role": self.role.value,
        }
        if self.has_default:
            out["default"] = self.default
        for key in ("widget", "options", "min", "max", "step", "priority"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.description:
            out["description"] = self.description
        return out


@dataclass(frozen=True)
class NodeSchema:
    """Algorithm definition supplied by the catalog."""

    function_id: str
    name: str = ""
    category: str = ""
    description: str = ""
    inputs: List[PortSpec] = field(default_factory=list)
    outputs: List[PortSpec] = field(default_factory=list)
    args: List[ParamSpec] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)

    @property
    def is_free(self) -> bool:
        fid = self.function_id.strip()
        if fid == FREE_SCHEMA_ID or self.category == FREE_CATEGORY:
            return True
        # A schema without an id still compiles (to `noop`) as long as it declares anything.
        return not (fid or self.name or self.inputs or self.outputs or self.args)

    @property
    def display_name(self) -> str:
        return self.name or self.function_id

    def input_port(self, name: str) -> Optional[PortSpec]:
        return next((p for p in self.inputs if p.name == name), None)

    def output_port(self, name: str) -> Optional[PortSpec]:
        return next((p for p in self.outputs if p.name == name), None)

    def input_names(self) -> List[str]:
        """Names that accept an incoming edge: args with role=input, then input ports."""
        names: List[str] = []
        for arg in self.args:
            if arg.role is ParamRole.INPUT and arg.name not in names:
                names.append(arg.name)
        for port in self.inputs:
            if port.name not in names:
                names.append(port.name)
        return names

    def accepts_input(self, name: str) -> bool:
        return name in self.input_names()

    def required_inputs(self) -> List[str]:
        return [p.name for p in self.inputs if p.required]

    def default_values(self, empty_fields: Tuple[str, ...] = ()) -> Dict[str, Any]:
        """Initial values for a freshly selected algorithm."""
        values: Dict[str, Any] = {}
        for arg in self.args:
            if not arg.has_default:
                continue
            values[arg.name] = "" if arg.name in empty_fields else arg.default
        return values

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.function_id,
            "name": self.name,
            "category": self.category,
            "inputs": [p.to_dict() for p in self.inputs],
            "outputs": [p.to_dict() for p in self.outputs],
            "args": [a.to_dict() for a in self.args],
        }
        if self.description:
            out["description"] = self.description
        if self.imports:
            out["imports"] = list(self.imports)
        return out


def _ports_from_raw(raw: Any) -> List[PortSpec]:
    if not isinstance(raw, list):
        return []
    out: List[PortSpec] = []
    seen: set[str] = set()
    for p in raw:
        if isinstance(p, str):
            p = {"name": p}
        if not isinstance(p, dict):
            continue
        name = str(p.get("name") or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        ptype = p.get("type")
        out.append(
            PortSpec(
                name=name,
                type=str(ptype).strip() if isinstance(ptype, str) and ptype.strip() else "any",
                required=p.get("required") is not False,
            )
        )
    return out


def _coerce_role(value: Any) -> ParamRole:
    if isinstance(value, ParamRole):
        return value
    s = str(value or "").strip().lower()
    if s.startswith("paramrole."):
        s = s.split(".", 1)[1]
    try:
        return ParamRole(s)
    except ValueError:
        return ParamRole.PARAMETER


def _opt_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _params_from_raw(raw: Any) -> List[ParamSpec]:
    if not isinstance(raw, list):
        return []
    out: List[ParamSpec] = []
    seen: set[str] = set()
    for a in raw:
        if not isinstance(a, dict):
            continue
        name = str(a.get("name") or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        options = a.get("options")
        widget = a.get("widget")
        priority = a.get("priority")
        out.append(
            ParamSpec(
                name=name,
                type=str(a.get("type") or "str"),
                label=str(a.get("label") or ""),
                role=_coerce_role(a.get("role")),
                default=a.get("default"),
                has_default="default" in a,
                widget=str(widget) if isinstance(widget, str) and widget else None,
                options=list(options) if isinstance(options, list) else None,
                min=_opt_number(a.get("min")),
                max=_opt_number(a.get("max")),
                step=_opt_number(a.get("step")),
                description=str(a.get("description") or ""),
                priority=str(priority) if isinstance(priority, str) and priority else None,
            )
        )
    return out


def schema_from_dict(raw: Any, *, strict: bool = False) -> Optional[NodeSchema]:
    """Parse a catalog/persisted schema dict into a `NodeSchema`.

    Also accepts Pydantic-like models by calling `model_dump()`.
    Returns None for missing or malformed data unless `strict=True`, in which
    case a `SchemaError` is raised.
    """
    if isinstance(raw, NodeSchema):
        return raw
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()  # type: ignore[assignment]

    if not isinstance(raw, dict) or not raw:
        if strict:
            raise SchemaError("Schema must be a non-empty JSON object")
        return None

    fid = str(raw.get("id") or raw.get("functionId") or raw.get("function_id") or "").strip()
    if strict and not fid:
        raise SchemaError("Schema missing required 'id'")

    imports_raw = raw.get("imports")
    imports: List[str] = []
    if isinstance(imports_raw, list):
        for it in imports_raw:
            if isinstance(it, str) and it.strip() and it.strip() not in imports:
                imports.append(it.strip())

    return NodeSchema(
        function_id=fid,
        name=str(raw.get("name") or ""),
        category=str(raw.get("category") or ""),
        description=str(raw.get("description") or ""),
        inputs=_ports_from_raw(raw.get("inputs")),
        outputs=_ports_from_raw(raw.get("outputs")),
        args=_params_from_raw(raw.get("args")),
        imports=imports,
    )


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name}
        if self.type is not None:
            out["type"] = self.type
        return out


ColumnMap = Dict[str, List[ColumnInfo]]


def columns_from_raw(raw: Any) -> List[ColumnInfo]:
    if not isinstance(raw, list):
        return []
    out: List[ColumnInfo] = []
    for c in raw:
        if isinstance(c, str):
            c = {"name": c}
        if not isinstance(c, dict) or c.get("name") is None:
            continue
        ctype = c.get("type")
        out.append(ColumnInfo(name=str(c["name"]), type=str(ctype) if ctype is not None else None))
    return out


def column_map_from_raw(raw: Any) -> ColumnMap:
    if not isinstance(raw, dict):
        return {}
    return {str(port): columns_from_raw(cols) for port, cols in raw.items() if isinstance(cols, list)}


def column_map_to_raw(columns: ColumnMap) -> Dict[str, List[Dict[str, Any]]]:
    return {port: [c.to_dict() for c in cols] for port, cols in columns.items()}


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


def make_edge_id(source_id: str, target_id: str, source_port: str, target_port: str) -> str:
    return f"e-{source_id}-{target_id}-{source_port}-{target_port}"


@dataclass(frozen=True)
class FlowEdge:
    """Directed data connection `source_id:source_port -> target_id:target_port`."""

    source_id: str
    source_port: str
    target_id: str
    target_port: str
    id: str = ""

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.source_id, self.source_port, self.target_id, self.target_port)

    @property
    def edge_id(self) -> str:
        return self.id or make_edge_id(self.source_id, self.target_id, self.source_port, self.target_port)

    def touches(self, node_id: str) -> bool:
        return self.source_id == node_id or self.target_id == node_id

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.edge_id,
            "sourceId": self.source_id,
            "targetId": self.target_id,
            "sourcePort": self.source_port,
            "targetPort": self.target_port,
        }


def edge_from_dict(raw: Any) -> Optional[FlowEdge]:
    """Parse a persisted edge record (also accepts source/target/...Handle keys)."""
    if not isinstance(raw, dict):
        return None
    src = str(raw.get("sourceId") or raw.get("source") or "").strip()
    tgt = str(raw.get("targetId") or raw.get("target") or "").strip()
    sp = raw.get("sourcePort", raw.get("sourceHandle"))
    tp = raw.get("targetPort", raw.get("targetHandle"))
    if not src or not tgt:
        return None
    if not isinstance(sp, str) or not sp.strip():
        return None
    if not isinstance(tp, str) or not tp.strip():
        return None
    eid = raw.get("id")
    return FlowEdge(
        source_id=src,
        source_port=sp.strip(),
        target_id=tgt,
        target_port=tp.strip(),
        id=eid.strip() if isinstance(eid, str) else "",
    )


def edges_from_raw(raw: Any) -> List[FlowEdge]:
    """Parse a persisted edge list, dropping malformed entries and duplicates."""
    if not isinstance(raw, list):
        return []
    out: List[FlowEdge] = []
    seen: set[Tuple[str, str, str, str]] = set()
    for e in raw:
        edge = edge_from_dict(e)
        if edge is None or edge.key in seen:
            continue
        seen.add(edge.key)
        out.append(edge)
    return out


@dataclass(frozen=True)
class FlowNode:
    """One graph vertex, backed by one document unit."""

    id: str
    unit_id: str = ""
    index: int = 0
    schema: Optional[NodeSchema] = None
    values: Dict[str, Any] = field(default_factory=dict)
    sequence_number: int = 0
    output_variables: Dict[str, str] = field(default_factory=dict)
    input_variables: Dict[str, str] = field(default_factory=dict)
    position: Position = Position(0.0, 0.0)
    status: NodeStatus = NodeStatus.UNCONFIGURED
    label: str = ""
    input_columns: ColumnMap = field(default_factory=dict)
    output_columns: ColumnMap = field(default_factory=dict)
    source: str = ""

    @property
    def is_free(self) -> bool:
        return self.schema is None or self.schema.is_free

    @property
    def has_outputs(self) -> bool:
        return not self.is_free and bool(self.schema.outputs)  # type: ignore[union-attr]


@dataclass(frozen=True)
class ConnectResult:
    """Outcome of a connect request."""

    accepted: bool
    reason: str = ""
    edge: Optional[FlowEdge] = None

    def __bool__(self) -> bool:
        return self.accepted
