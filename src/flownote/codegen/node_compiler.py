"""Per-node code generation.

A node compiles to one call of its catalog function:

    # Threshold Filter
    from workflow_lib import *
    n01_out = threshold_filter(df=None, threshold=0.7)
    try:
        display(n01_out.head())
    except Exception:
        print(n01_out)

Binding rules:
- no output port          -> bare call
- one port with a legal variable -> assign the call to it, then preview it
- otherwise               -> assign to an intermediate, bind every port that has
                             a legal variable to it, then preview the intermediate

Incomplete schemas still compile (missing function id -> `noop`) so a partially
configured graph never blocks its siblings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..core.config import FlowNoteConfig
from ..core.models import NodeSchema, ParamRole, schema_from_dict
from .builder import CodeBuilder
from .formatter import format_argument, is_bare_identifier

PLACEHOLDER_FUNCTION = "noop"
DEFAULT_TITLE = "Step"

_DEFAULT_CONFIG = FlowNoteConfig()


@dataclass(frozen=True)
class CompiledNode:
    """Structured compiler output (used by the batch compiler)."""

    title: str
    call: str
    body: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    # Name holding the node's result; None when the schema has no output port.
    result_name: Optional[str] = None


def _coerce_schema(schema: Any) -> NodeSchema:
    parsed = schema_from_dict(schema)
    return parsed if parsed is not None else NodeSchema(function_id="")


def collect_arguments(
    schema: NodeSchema,
    values: Mapping[str, Any],
    *,
    server_root: Optional[str] = None,
    config: Optional[FlowNoteConfig] = None,
) -> List[str]:
    """Render call arguments: input ports first, then non-output args."""
    cfg = config or _DEFAULT_CONFIG
    args: List[str] = []
    included: set[str] = set()

    for port in schema.inputs:
        if port.name in included:
            continue
        args.append(
            format_argument(port.name, values.get(port.name), port.type, "input", server_root, config=cfg)
        )
        included.add(port.name)

    for arg in schema.args:
        if arg.role is ParamRole.OUTPUT or arg.name in included:
            continue
        value = values[arg.name] if arg.name in values else arg.default
        args.append(format_argument(arg.name, value, arg.type, arg.role.value, server_root, config=cfg))
        included.add(arg.name)

    return args


def fragment_imports(schema: NodeSchema, config: Optional[FlowNoteConfig] = None) -> List[str]:
    cfg = config or _DEFAULT_CONFIG
    imports: List[str] = []
    for stmt in [cfg.helper_import, *schema.imports]:
        if stmt and stmt not in imports:
            imports.append(stmt)
    return imports


def build_node_call(
    schema: Any,
    values: Optional[Mapping[str, Any]] = None,
    output_vars: Optional[Mapping[str, str]] = None,
    *,
    server_root: Optional[str] = None,
    config: Optional[FlowNoteConfig] = None,
) -> CompiledNode:
    cfg = config or _DEFAULT_CONFIG
    sch = _coerce_schema(schema)
    vals = dict(values or {})
    out_vars = dict(output_vars or {})

    func = sch.function_id.strip() or PLACEHOLDER_FUNCTION
    call = f"{func}({', '.join(collect_arguments(sch, vals, server_root=server_root, config=cfg))})"
    body = CodeBuilder()
    outputs = sch.outputs

    result_name: Optional[str] = None
    if not outputs:
        body.line(call)
    else:
        primary = out_vars.get(outputs[0].name)
        if len(outputs) == 1 and is_bare_identifier(primary):
            result_name = str(primary)
            body.assign(result_name, call)
        else:
            result_name = cfg.intermediate_name
            body.assign(result_name, call)
            for port in outputs:
                var = out_vars.get(port.name)
                if is_bare_identifier(var) and var != result_name:
                    body.assign(str(var), result_name)
        body.try_except([f"display({result_name}.head())"], [f"print({result_name})"])

    return CompiledNode(
        title=sch.name or DEFAULT_TITLE,
        call=call,
        body=body.build().split("\n"),
        imports=fragment_imports(sch, cfg),
        result_name=result_name,
    )


def compile_node(
    schema: Any,
    values: Optional[Mapping[str, Any]] = None,
    output_vars: Optional[Mapping[str, str]] = None,
    *,
    server_root: Optional[str] = None,
    config: Optional[FlowNoteConfig] = None,
    include_imports: bool = True,
) -> str:
    """Compile one node to a source fragment (deterministic)."""
    compiled = build_node_call(schema, values, output_vars, server_root=server_root, config=config)
    out = CodeBuilder()
    out.comment(compiled.title)
    if include_imports:
        out.lines(compiled.imports)
    out.lines(compiled.body)
    return out.build()


def resolve_input_values(
    schema: NodeSchema,
    values: Mapping[str, Any],
    bindings: Mapping[str, Optional[str]],
) -> Dict[str, Any]:
    """Overlay edge bindings onto stored values.

    `bindings` maps each connectable input name to the upstream variable (or
    None when the upstream has no assignable variable). Inputs without a
    binding are disconnected: their stored value is dropped so ports compile to
    `None` and role=input args fall back to their declared default.
    """
    resolved = dict(values)
    for name in schema.input_names():
        if name not in bindings:
            resolved.pop(name, None)
            continue
        ref = bindings[name]
        if is_bare_identifier(ref):
            resolved[name] = ref
    return resolved
