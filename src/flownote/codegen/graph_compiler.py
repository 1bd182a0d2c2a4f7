"""Whole-graph (batch) export.

Compiles a node/edge graph into one standalone program:

- imports: the helper import plus every schema import, de-duplicated and sorted,
- `class Workflow`: one `step_<node>` method per node in topological order and a
  `run()` driver that threads each step's result into its successors,
- an execution footer.

Output is deterministic for identical graphs. A cycle yields a `CycleError`
artifact instead of any code.
"""

from __future__ import annotations

import keyword
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..core.config import FlowNoteConfig
from ..core.models import FlowEdge, FlowNode
from ..logging import get_logger
from .builder import CodeBuilder
from .node_compiler import PLACEHOLDER_FUNCTION, build_node_call, resolve_input_values

logger = get_logger(__name__)

_DEFAULT_CONFIG = FlowNoteConfig()
_NON_WORD_RE = re.compile(r"\W")


@dataclass(frozen=True)
class CycleError:
    """Returned by `compile_graph` when the graph is not a DAG."""

    node_ids: List[str] = field(default_factory=list)
    message: str = "Cycle detected in workflow!"

    def as_source(self) -> str:
        return f"# Error: {self.message}"

    def __str__(self) -> str:
        return self.as_source()


def _kahn(nodes: Sequence[FlowNode], edges: Sequence[FlowEdge]) -> Tuple[List[FlowNode], int]:
    node_map: Dict[str, FlowNode] = {}
    for n in nodes:
        node_map.setdefault(n.id, n)
    adjacency: Dict[str, List[str]] = {nid: [] for nid in node_map}
    in_degree: Dict[str, int] = {nid: 0 for nid in node_map}
    for e in edges:
        if e.source_id not in node_map or e.target_id not in node_map:
            continue
        adjacency[e.source_id].append(e.target_id)
        in_degree[e.target_id] += 1

    queue = deque(nid for nid in node_map if in_degree[nid] == 0)
    order: List[FlowNode] = []
    while queue:
        nid = queue.popleft()
        order.append(node_map[nid])
        for succ in adjacency[nid]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                queue.append(succ)
    return order, len(node_map)


def topological_order(nodes: Sequence[FlowNode], edges: Sequence[FlowEdge]) -> Optional[List[FlowNode]]:
    """Kahn's algorithm; returns None when the graph contains a cycle.

    Ties are broken by node order (initial queue) and edge order (successors),
    so identical inputs always produce the same order. Edges with an unknown
    endpoint are ignored.
    """
    order, total = _kahn(nodes, edges)
    return order if len(order) == total else None


def _identifier(text: str, fallback: str = "x") -> str:
    s = _NON_WORD_RE.sub("_", str(text or "").strip())
    if not s:
        s = fallback
    if s[0].isdigit():
        s = f"_{s}"
    if keyword.iskeyword(s):
        s = f"{s}_"
    return s


class _Names:
    """Allocates unique identifiers within one scope."""

    def __init__(self, reserved: Sequence[str] = ()):
        self._taken = set(reserved)

    def take(self, base: str, index: int = 0) -> str:
        name = base
        n = index + 1
        while name in self._taken:
            name = f"{base}_{n}"
            n += 1
        self._taken.add(name)
        return name


@dataclass
class _Step:
    node: FlowNode
    method: str
    incoming: List[FlowEdge]
    params: List[str]
    result_name: Optional[str]


def _free_step_body(source: str) -> List[str]:
    lines: List[str] = []
    for raw in str(source or "").splitlines():
        stripped = raw.lstrip()
        # IPython magics and shell escapes are not valid in a plain module.
        if stripped.startswith(("%", "!")):
            lines.append(raw[: len(raw) - len(stripped)] + "# " + stripped)
        else:
            lines.append(raw.rstrip())
    while lines and not lines[-1].strip():
        lines.pop()
    if not any(l.strip() and not l.strip().startswith("#") for l in lines):
        lines.append("pass")
    return lines


def compile_graph(
    nodes: Sequence[FlowNode],
    edges: Sequence[FlowEdge],
    *,
    server_root: Optional[str] = None,
    config: Optional[FlowNoteConfig] = None,
) -> Union[str, CycleError]:
    cfg = config or _DEFAULT_CONFIG
    order = topological_order(nodes, edges)
    if order is None:
        ordered_ids = {n.id for n in _kahn(nodes, edges)[0]}
        stuck = [n.id for n in nodes if n.id not in ordered_ids]
        logger.warning("Batch export aborted: cycle detected", nodes=len(stuck))
        return CycleError(node_ids=stuck)

    known = {n.id for n in order}
    method_names = _Names(reserved=("run",))
    imports: set[str] = {cfg.helper_import} if cfg.helper_import else set()
    steps: List[_Step] = []
    out = CodeBuilder()

    class_body = CodeBuilder(indent=1)
    class_body.line(f'"""Generated workflow: {len(order)} step(s) in dependency order."""')
    class_body.line()
    class_body.line("def __init__(self):")
    with class_body.indented():
        class_body.line("self.results = {}")

    for node in order:
        method = method_names.take(f"step_{_identifier(node.id)}")
        schema = node.schema
        if schema is None or schema.is_free:
            steps.append(_Step(node=node, method=method, incoming=[], params=[], result_name=None))
            class_body.line()
            class_body.comment(f"{node.label or 'Free step'} (ID: {node.id})")
            class_body.line(f"def {method}(self):")
            with class_body.indented():
                class_body.lines(_free_step_body(node.source))
            continue

        imports.update(schema.imports)

        incoming = [e for e in edges if e.target_id == node.id and e.source_id in known]
        # Parameters must not shadow the call target or the preview helpers.
        callee = schema.function_id.strip() or PLACEHOLDER_FUNCTION
        param_names = _Names(reserved=("self", "print", "display", cfg.intermediate_name, callee))
        params: List[str] = []
        bindings: Dict[str, Optional[str]] = {}
        for idx, e in enumerate(incoming):
            name = param_names.take(_identifier(e.target_port, "inp"), idx)
            params.append(name)
            bindings.setdefault(e.target_port, name)

        values = resolve_input_values(schema, node.values, bindings)
        compiled = build_node_call(
            schema, values, node.output_variables, server_root=server_root, config=cfg
        )
        steps.append(
            _Step(node=node, method=method, incoming=incoming, params=params, result_name=compiled.result_name)
        )

        class_body.line()
        class_body.comment(f"{compiled.title} (ID: {node.id})")
        signature = ", ".join(["self", *params])
        class_body.line(f"def {method}({signature}):")
        with class_body.indented():
            class_body.comment(compiled.title)
            class_body.lines(compiled.body)
            if compiled.result_name is not None:
                class_body.line(f"self.results[{node.id!r}] = {compiled.result_name}")
                class_body.line(f"return {compiled.result_name}")

    class_body.line()
    class_body.line("def run(self):")
    run_names = _Names()
    run_vars: Dict[str, str] = {}
    last_result: Optional[str] = None
    with class_body.indented():
        for step in steps:
            args = ", ".join(run_vars.get(e.source_id, "None") for e in step.incoming)
            invocation = f"self.{step.method}({args})"
            if step.result_name is None:
                class_body.line(invocation)
                continue
            var = run_names.take(f"res_{_identifier(step.node.id)}")
            run_vars[step.node.id] = var
            class_body.assign(var, invocation)
            last_result = var
        class_body.line(f"return {last_result or 'None'}")

    for stmt in sorted(i for i in imports if i):
        out.line(stmt)
    if imports:
        out.line()
        out.line()

    class_name = _identifier(cfg.workflow_class_name, "Workflow")
    instance = _identifier(class_name.lower())
    if instance == class_name:
        instance = f"{instance}_instance"

    out.line(f"class {class_name}:")
    out.lines(class_body.build().split("\n"))
    out.line()
    out.line()
    out.assign(instance, f"{class_name}()")
    out.line(f"{instance}.run()")
    out.line('print("Workflow finished.")')
    out.line(f"print(\"Intermediate results available in '{instance}.results'.\")")
    return out.build() + "\n"
