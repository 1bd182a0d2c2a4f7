"""flownote.sync.synchronizer

Keeps a document's units, its persisted graph metadata and the generated code
of every configured node consistent.

Every public operation is one *pass*:

1. open a `DocumentTransaction` on the store,
2. rebuild the graph from the staged view (binding new units, pruning invalid
   edges and recompiling their targets),
3. apply the operation and recompile the nodes it affects,
4. commit all staged writes in a single `DocumentStore.apply`.

Passes are serialized through a `PassQueue`; store events raised by a pass's own
commit are queued behind it and coalesced into one refresh. A pass that raises
leaves the document untouched.

Unit states:
- unbound: unit has no node identity yet (only observable before a refresh),
- bound: identity assigned, source not generated by FlowNote (free nodes, or
  configured nodes that were never compiled),
- compiled: source equals the node's generated code,
- stale: source was generated, then edited by hand.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from ..codegen.graph_compiler import CycleError, compile_graph
from ..codegen.node_compiler import compile_node, resolve_input_values
from ..core import keys
from ..core.config import FlowNoteConfig
from ..core.models import (
    ColumnMap,
    ConnectResult,
    FlowEdge,
    FlowNode,
    NodeSchema,
    Position,
    UnitState,
    column_map_to_raw,
    edges_from_raw,
    schema_from_dict,
)
from ..logging import get_logger
from ..runtime.base import RuntimeClient
from ..storage.base import DocumentChanges, DocumentStore, DocumentTransaction
from . import resolver
from .graph import FlowGraph
from .introspector import RuntimeIntrospector
from .queue import PassQueue

logger = get_logger(__name__)

FREE_STUB = "# New Step\n# Add your code here\n"
REFRESH_KEY = "refresh"

PositionLike = Union[Position, Mapping[str, Any], Tuple[float, float]]


def _coerce_position(value: Any) -> Optional[Position]:
    if isinstance(value, Position):
        return value
    if isinstance(value, Mapping):
        value = (value.get("x"), value.get("y"))
    if isinstance(value, (tuple, list)) and len(value) == 2:
        x, y = value
        if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (x, y)):
            return Position(float(x), float(y))
    return None


class UnitSynchronizer:
    def __init__(
        self,
        store: DocumentStore,
        *,
        runtime: Optional[RuntimeClient] = None,
        config: Optional[FlowNoteConfig] = None,
        introspector: Optional[RuntimeIntrospector] = None,
    ):
        self._store = store
        self._config = config or FlowNoteConfig()
        if introspector is None and runtime is not None:
            introspector = RuntimeIntrospector(runtime, self._config)
        self._introspector = introspector
        self._queue = PassQueue()
        self._graph = FlowGraph()
        self._states: Dict[str, UnitState] = {}
        self._generated: Set[str] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def config(self) -> FlowNoteConfig:
        return self._config

    @property
    def graph(self) -> FlowGraph:
        """Graph as of the last completed pass."""
        return self._graph

    def state_of(self, node_id: str) -> UnitState:
        return self._states.get(node_id, UnitState.UNBOUND)

    # ------------------------------------------------------------------
    # Host wiring

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._on_store_changed)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def _on_store_changed(self, changes: DocumentChanges) -> None:
        if changes.structural:
            self.on_units_changed()
        else:
            self.on_content_changed()

    def on_units_changed(self) -> Optional[FlowGraph]:
        return self.refresh()

    def on_content_changed(self) -> Optional[FlowGraph]:
        return self.refresh()

    # ------------------------------------------------------------------
    # Pass machinery

    def _submit(self, op: Callable[[DocumentTransaction, FlowGraph], Any], *, key: Optional[str] = None) -> Any:
        def _pass() -> Any:
            with self._store.transaction() as tx:
                graph = self._rebuild(tx)
                result = op(tx, graph)
                final = self._rebuild(tx)
            self._graph = final
            return result

        return self._queue.run(_pass, key=key)

    def _bind_units(self, tx: DocumentTransaction) -> Tuple[List[Tuple[str, str, Optional[NodeSchema]]], Set[str]]:
        """Assign identity fields to every unit.

        Returns (unit_id, node_id, schema) in document order, and the node ids
        given to copied units (their source still refers to the original).
        """
        bound: List[Tuple[str, str, Optional[NodeSchema]]] = []
        copies: Set[str] = set()
        taken: Set[str] = set()
        placed: List[Position] = []
        for unit in tx.units():
            existing = keys.get_str(unit.metadata, keys.NODE_ID)
            if existing and existing in taken:
                # Copied unit: new identity, new number, new variables.
                tx.set_unit_metadata(unit.unit_id, keys.NODE_NUMBER, None)
                tx.set_unit_metadata(unit.unit_id, keys.OUTPUT_VARS, None)
                tx.set_unit_metadata(unit.unit_id, keys.OUTPUT_COLUMNS, None)
            node_id = resolver.ensure_node_id(tx, unit.unit_id, taken)
            if existing and existing != node_id:
                copies.add(node_id)
            taken.add(node_id)
            number = resolver.ensure_node_number(tx, unit.unit_id)
            schema = resolver.read_schema(tx.unit_metadata(unit.unit_id))
            resolver.ensure_output_variables(tx, unit.unit_id, schema, number)
            placed.append(resolver.ensure_position(tx, unit.unit_id, placed, self._config))
            if not existing:
                logger.debug("Bound unit", unit_id=unit.unit_id, node_id=node_id, number=number)
            bound.append((unit.unit_id, node_id, schema))
        return bound, copies

    @staticmethod
    def _edge_valid(edge: FlowEdge, schemas: Mapping[str, Optional[NodeSchema]]) -> bool:
        if edge.source_id == edge.target_id:
            return False
        if edge.source_id not in schemas or edge.target_id not in schemas:
            return False
        src, tgt = schemas[edge.source_id], schemas[edge.target_id]
        if src is None or src.is_free or src.output_port(edge.source_port) is None:
            return False
        if tgt is None or tgt.is_free or not tgt.accepts_input(edge.target_port):
            return False
        return True

    def _write_edges(self, tx: DocumentTransaction, edges: Iterable[FlowEdge]) -> None:
        tx.set_document_metadata(keys.EDGES, [e.to_dict() for e in edges])

    def _rebuild(self, tx: DocumentTransaction) -> FlowGraph:
        bound, copies = self._bind_units(tx)
        schemas = {nid: schema for _, nid, schema in bound}

        raw_edges = keys.get_list(tx.document_metadata(), keys.EDGES)
        parsed = edges_from_raw(raw_edges)
        edges = [e for e in parsed if self._edge_valid(e, schemas)]
        dirty = {e.target_id for e in parsed if e not in edges and e.target_id in schemas} | copies
        if len(edges) != len(parsed):
            logger.info("Pruned invalid edges", count=len(parsed) - len(edges))
        if [e.to_dict() for e in edges] != raw_edges:
            self._write_edges(tx, edges)

        graph = self._build_graph(tx, bound, edges)
        for nid in dirty:
            self._compile(tx, graph, nid)
        self._update_states(graph)
        return graph

    def _build_graph(
        self,
        tx: DocumentTransaction,
        bound: List[Tuple[str, str, Optional[NodeSchema]]],
        edges: List[FlowEdge],
    ) -> FlowGraph:
        metas = {uid: tx.unit_metadata(uid) for uid, _, _ in bound}
        out_vars = {nid: resolver.read_output_variables(metas[uid]) for uid, nid, _ in bound}
        out_cols = {nid: resolver.read_output_columns(metas[uid]) for uid, nid, _ in bound}
        units = {u.unit_id: u for u in tx.units()}

        nodes: List[FlowNode] = []
        for uid, nid, schema in bound:
            meta = metas[uid]
            unit = units[uid]
            free = schema is None or schema.is_free
            bindings = resolver.input_bindings(nid, edges, out_vars)
            nodes.append(
                FlowNode(
                    id=nid,
                    unit_id=uid,
                    index=unit.index,
                    schema=None if free else schema,
                    values=resolver.read_values(meta),
                    sequence_number=keys.get_int(meta, keys.NODE_NUMBER),
                    output_variables={} if free else out_vars[nid],
                    input_variables={k: v for k, v in bindings.items() if v},
                    position=resolver.read_position(meta) or Position(self._config.layout_x, self._config.layout_y),
                    status=resolver.resolve_status(schema, meta.get(keys.RUN_STATE), nid, edges),
                    label=resolver.infer_label(schema, unit.source, self._config.label_max_length),
                    input_columns=resolver.input_columns(nid, edges, out_cols),
                    output_columns=out_cols[nid],
                    source=unit.source,
                )
            )
        return FlowGraph.build(nodes, edges)

    def _node_code(self, graph: FlowGraph, node: FlowNode) -> Optional[str]:
        if node.is_free:
            return None
        out_vars = {n.id: n.output_variables for n in graph}
        bindings = resolver.input_bindings(node.id, graph.edges, out_vars)
        values = resolve_input_values(node.schema, node.values, bindings)  # type: ignore[arg-type]
        return compile_node(
            node.schema,
            values,
            node.output_variables,
            server_root=self._config.server_root,
            config=self._config,
        )

    def _compile(self, tx: DocumentTransaction, graph: FlowGraph, node_id: str) -> bool:
        node = graph.get(node_id)
        if node is None:
            return False
        code = self._node_code(graph, node)
        if code is None:
            return False
        tx.set_source(node.unit_id, code)
        graph.nodes[node_id] = replace(node, source=code)
        self._generated.add(node_id)
        return True

    def _update_states(self, graph: FlowGraph) -> None:
        states: Dict[str, UnitState] = {}
        for node in graph:
            code = self._node_code(graph, node)
            if code is not None and node.source == code:
                states[node.id] = UnitState.COMPILED
                self._generated.add(node.id)
            elif code is not None and node.id in self._generated:
                states[node.id] = UnitState.STALE
            else:
                states[node.id] = UnitState.BOUND
        self._states = states
        self._generated &= set(states)

    # ------------------------------------------------------------------
    # Operations

    def refresh(self) -> Optional[FlowGraph]:
        """Rebuild the graph from the document (None when deferred behind a running pass)."""
        if self._submit(lambda tx, graph: True, key=REFRESH_KEY) is None:
            return None
        return self._graph

    def preview(self) -> FlowGraph:
        """Graph as a refresh would build it, without writing to the store."""
        tx = self._store.transaction()
        try:
            return self._rebuild(tx)
        finally:
            tx.discard()

    def add_node(
        self,
        schema: Any = None,
        position: Optional[PositionLike] = None,
        index: Optional[int] = None,
    ) -> Optional[str]:
        parsed = schema_from_dict(schema) if schema is not None else None
        node_id = str(uuid.uuid4())

        def _op(tx: DocumentTransaction, graph: FlowGraph) -> str:
            metadata: Dict[str, Any] = {keys.NODE_ID: node_id}
            pos = _coerce_position(position)
            if pos is not None:
                metadata[keys.POSITION] = pos.to_dict()
            source = FREE_STUB
            if parsed is not None and not parsed.is_free:
                metadata[keys.SCHEMA] = parsed.to_dict()
                metadata[keys.VALUES] = parsed.default_values(self._config.empty_default_fields)
                source = f"# {parsed.display_name}\n"
            tx.insert_unit(source, metadata, index)
            rebuilt = self._rebuild(tx)
            self._compile(tx, rebuilt, node_id)
            logger.info("Node added", node_id=node_id, function=parsed.function_id if parsed else "")
            return node_id

        return self._submit(_op)

    def select_algorithm(self, node_id: str, schema: Any) -> bool:
        parsed = schema_from_dict(schema)
        if parsed is None:
            logger.warning("Rejected malformed schema", node_id=node_id)
            return False

        def _op(tx: DocumentTransaction, graph: FlowGraph) -> bool:
            node = graph.get(node_id)
            if node is None:
                logger.warning("Unknown node", node_id=node_id, op="select_algorithm")
                return False
            uid = node.unit_id
            tx.set_unit_metadata(uid, keys.OUTPUT_COLUMNS, None)
            if parsed.is_free:
                for key in (keys.SCHEMA, keys.VALUES, keys.OUTPUT_VARS):
                    tx.set_unit_metadata(uid, key, None)
            else:
                number = node.sequence_number or resolver.ensure_node_number(tx, uid)
                tx.set_unit_metadata(uid, keys.SCHEMA, parsed.to_dict())
                tx.set_unit_metadata(uid, keys.VALUES, parsed.default_values(self._config.empty_default_fields))
                tx.set_unit_metadata(
                    uid,
                    keys.OUTPUT_VARS,
                    {p.name: resolver.output_variable_name(number, p.name) for p in parsed.outputs},
                )
            rebuilt = self._rebuild(tx)
            self._compile(tx, rebuilt, node_id)
            for succ in rebuilt.downstream(node_id):
                self._compile(tx, rebuilt, succ)
            logger.info("Algorithm selected", node_id=node_id, function=parsed.function_id)
            return True

        return bool(self._submit(_op))

    def set_values(self, node_id: str, values: Mapping[str, Any]) -> bool:
        def _op(tx: DocumentTransaction, graph: FlowGraph) -> bool:
            node = graph.get(node_id)
            if node is None:
                logger.warning("Unknown node", node_id=node_id, op="set_values")
                return False
            tx.set_unit_metadata(node.unit_id, keys.VALUES, dict(values))
            self._compile(tx, self._rebuild(tx), node_id)
            return True

        return bool(self._submit(_op))

    def set_value(self, node_id: str, name: str, value: Any) -> bool:
        def _op(tx: DocumentTransaction, graph: FlowGraph) -> bool:
            node = graph.get(node_id)
            if node is None:
                logger.warning("Unknown node", node_id=node_id, op="set_value")
                return False
            merged = dict(node.values)
            merged[name] = value
            tx.set_unit_metadata(node.unit_id, keys.VALUES, merged)
            self._compile(tx, self._rebuild(tx), node_id)
            return True

        return bool(self._submit(_op))

    def connect(self, source_id: str, source_port: str, target_id: str, target_port: str) -> Optional[ConnectResult]:
        def _op(tx: DocumentTransaction, graph: FlowGraph) -> ConnectResult:
            src, tgt = graph.get(source_id), graph.get(target_id)
            if src is None or tgt is None:
                return ConnectResult(False, "unknown node")
            if source_id == target_id:
                return ConnectResult(False, "self loop")
            if src.is_free or src.schema.output_port(source_port) is None:  # type: ignore[union-attr]
                return ConnectResult(False, f"unknown output port '{source_port}'")
            if tgt.is_free or not tgt.schema.accepts_input(target_port):  # type: ignore[union-attr]
                return ConnectResult(False, f"unknown input port '{target_port}'")
            if graph.find_edge(source_id, source_port, target_id, target_port) is not None:
                return ConnectResult(False, "duplicate edge")
            if graph.reaches(target_id, source_id):
                return ConnectResult(False, "would create a cycle")

            edge = FlowEdge(source_id, source_port, target_id, target_port)
            edge = replace(edge, id=edge.edge_id)
            self._write_edges(tx, [*graph.edges, edge])
            self._compile(tx, self._rebuild(tx), target_id)
            logger.info("Connected", edge=edge.edge_id)
            return ConnectResult(True, edge=edge)

        result = self._submit(_op)
        if result is not None and not result.accepted:
            logger.warning("Connection rejected", reason=result.reason, source=source_id, target=target_id)
        return result

    def _remove_edges_where(self, tx: DocumentTransaction, graph: FlowGraph, pred: Callable[[FlowEdge], bool]) -> int:
        removed = [e for e in graph.edges if pred(e)]
        if not removed:
            return 0
        self._write_edges(tx, [e for e in graph.edges if not pred(e)])
        rebuilt = self._rebuild(tx)
        for target in dict.fromkeys(e.target_id for e in removed):
            self._compile(tx, rebuilt, target)
        return len(removed)

    def disconnect(self, source_id: str, source_port: str, target_id: str, target_port: str) -> bool:
        key = (source_id, source_port, target_id, target_port)
        return bool(self._submit(lambda tx, graph: self._remove_edges_where(tx, graph, lambda e: e.key == key)))

    def remove_edges(self, edge_ids: Iterable[str]) -> int:
        ids = set(edge_ids)
        return int(self._submit(lambda tx, graph: self._remove_edges_where(tx, graph, lambda e: e.edge_id in ids)) or 0)

    def delete_nodes(self, node_ids: Iterable[str]) -> int:
        doomed = set(node_ids)

        def _op(tx: DocumentTransaction, graph: FlowGraph) -> int:
            present = [nid for nid in doomed if nid in graph]
            for nid in doomed - set(present):
                logger.warning("Unknown node", node_id=nid, op="delete_nodes")
            if not present:
                return 0
            gone = set(present)
            orphaned = [e.target_id for e in graph.edges if e.source_id in gone and e.target_id not in gone]
            for nid in present:
                tx.delete_unit(graph.nodes[nid].unit_id)
            self._write_edges(tx, [e for e in graph.edges if e.source_id not in gone and e.target_id not in gone])
            rebuilt = self._rebuild(tx)
            for target in dict.fromkeys(orphaned):
                self._compile(tx, rebuilt, target)
            logger.info("Nodes deleted", count=len(present))
            return len(present)

        return int(self._submit(_op) or 0)

    def move_node(self, node_id: str, position: PositionLike) -> bool:
        pos = _coerce_position(position)
        if pos is None:
            logger.warning("Invalid position", node_id=node_id)
            return False

        def _op(tx: DocumentTransaction, graph: FlowGraph) -> bool:
            node = graph.get(node_id)
            if node is None:
                logger.warning("Unknown node", node_id=node_id, op="move_node")
                return False
            tx.set_unit_metadata(node.unit_id, keys.POSITION, pos.to_dict())
            return True

        return bool(self._submit(_op))

    def set_run_state(self, node_id: str, state: Optional[str]) -> bool:
        """Persist a run-state tag (e.g. "running", "success", "failed"); None clears it."""

        def _op(tx: DocumentTransaction, graph: FlowGraph) -> bool:
            node = graph.get(node_id)
            if node is None:
                logger.warning("Unknown node", node_id=node_id, op="set_run_state")
                return False
            tx.set_unit_metadata(node.unit_id, keys.RUN_STATE, state or None)
            return True

        return bool(self._submit(_op))

    def recompile(self, node_id: str) -> bool:
        def _op(tx: DocumentTransaction, graph: FlowGraph) -> bool:
            if node_id not in graph:
                logger.warning("Unknown node", node_id=node_id, op="recompile")
                return False
            return self._compile(tx, graph, node_id)

        return bool(self._submit(_op))

    def recompile_all(self) -> int:
        def _op(tx: DocumentTransaction, graph: FlowGraph) -> int:
            return sum(1 for nid in list(graph.nodes) if self._compile(tx, graph, nid))

        return int(self._submit(_op) or 0)

    async def on_execution_finished(self, node_id: str, succeeded: Optional[bool] = None) -> Optional[ColumnMap]:
        """Record the run outcome, then refresh the node's output columns.

        Returns the introspected columns, or None when the node is unknown, the
        reply was superseded by a newer run, or the node's output variables
        changed while the reply was pending (the columns are not written then).
        """
        if succeeded is not None:
            self.set_run_state(node_id, "success" if succeeded else "failed")
        self.refresh()
        node = self._graph.get(node_id)
        if node is None:
            logger.warning("Unknown node", node_id=node_id, op="on_execution_finished")
            return None
        if self._introspector is None or not node.output_variables:
            return {}

        queried = dict(node.output_variables)
        columns = await self._introspector.introspect(node_id, queried)
        if columns is None:
            return None

        def _op(tx: DocumentTransaction, g: FlowGraph) -> Optional[bool]:
            current = g.get(node_id)
            if current is None or current.output_variables != queried:
                logger.info("Discarded columns for changed node", node_id=node_id)
                return None
            tx.set_unit_metadata(current.unit_id, keys.OUTPUT_COLUMNS, column_map_to_raw(columns))
            return True

        if self._submit(_op) is None:
            return None
        return columns

    def export_program(self) -> Union[str, CycleError]:
        graph = self.preview()
        return compile_graph(
            graph.node_list(),
            graph.edges,
            server_root=self._config.server_root,
            config=self._config,
        )
