"""flownote.sync.graph

In-memory graph view rebuilt from the document on every pass.

Nodes are kept in an id-indexed arena (document order preserved); edges are a
plain list of id pairs. Nothing here is persisted directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

from ..core.models import FlowEdge, FlowNode


@dataclass
class FlowGraph:
    nodes: Dict[str, FlowNode] = field(default_factory=dict)
    edges: List[FlowEdge] = field(default_factory=list)

    @classmethod
    def build(cls, nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> "FlowGraph":
        g = cls()
        for n in nodes:
            g.nodes.setdefault(n.id, n)
        g.edges = list(edges)
        return g

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[FlowNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> Optional[FlowNode]:
        return self.nodes.get(node_id)

    def node_list(self) -> List[FlowNode]:
        return list(self.nodes.values())

    def incoming(self, node_id: str) -> List[FlowEdge]:
        return [e for e in self.edges if e.target_id == node_id]

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        return [e for e in self.edges if e.source_id == node_id]

    def downstream(self, node_id: str) -> List[str]:
        """Direct successors, in edge order, without duplicates."""
        out: List[str] = []
        for e in self.outgoing(node_id):
            if e.target_id not in out:
                out.append(e.target_id)
        return out

    def reaches(self, start_id: str, goal_id: str) -> bool:
        """True when `goal_id` is reachable from `start_id` along edges."""
        if start_id == goal_id:
            return True
        seen: Set[str] = {start_id}
        stack = [start_id]
        while stack:
            for succ in self.downstream(stack.pop()):
                if succ == goal_id:
                    return True
                if succ not in seen:
                    seen.add(succ)
                    stack.append(succ)
        return False

    def find_edge(self, source_id: str, source_port: str, target_id: str, target_port: str) -> Optional[FlowEdge]:
        key = (source_id, source_port, target_id, target_port)
        return next((e for e in self.edges if e.key == key), None)

    def by_unit(self, unit_id: str) -> Optional[FlowNode]:
        return next((n for n in self.nodes.values() if n.unit_id == unit_id), None)
