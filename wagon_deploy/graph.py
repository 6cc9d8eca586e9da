"""Deployment graph builder.

Orders stack nodes from their declared input references so every node is
provisioned after the nodes it reads from. Ordering is exposed in ranks:
nodes inside one rank have no edges between them and may be provisioned in
parallel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import CyclicDependency, GraphError, UnresolvedReference
from .model import StackNode


@dataclass
class DeploymentPlan:
    ranks: list[list[StackNode]]
    _upstream: dict[str, list[str]] = field(default_factory=dict, repr=False)
    _downstream: dict[str, list[str]] = field(default_factory=dict, repr=False)

    @property
    def order(self) -> list[StackNode]:
        return [node for rank in self.ranks for node in rank]

    @property
    def node_ids(self) -> list[str]:
        return [node.id for node in self.order]

    def node(self, node_id: str) -> StackNode:
        for node in self.order:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def dependencies(self, node_id: str) -> list[str]:
        return list(self._upstream.get(node_id, []))

    def dependents(self, node_id: str) -> list[str]:
        seen: list[str] = []
        stack = list(self._downstream.get(node_id, []))
        while stack:
            nid = stack.pop(0)
            if nid in seen:
                continue
            seen.append(nid)
            stack.extend(self._downstream.get(nid, []))
        position = {nid: i for i, nid in enumerate(self.node_ids)}
        return sorted(seen, key=lambda nid: position[nid])

    def to_json(self) -> dict[str, Any]:
        return {
            "ranks": [[node.id for node in rank] for rank in self.ranks],
            "order": self.node_ids,
            "dependencies": {nid: self.dependencies(nid) for nid in self.node_ids},
        }


def _validate(nodes: list[StackNode]) -> dict[str, StackNode]:
    by_id: dict[str, StackNode] = {}
    for node in nodes:
        if not node.id:
            raise GraphError("stack node id must not be empty")
        if node.id in by_id:
            raise GraphError(f"duplicate stack node id: {node.id!r}")
        by_id[node.id] = node

    for node in nodes:
        for input_name, ref in node.inputs.items():
            source = by_id.get(ref.source_node_id)
            if source is None:
                raise UnresolvedReference(
                    node.id, input_name, ref, f"unknown node {ref.source_node_id!r}"
                )
            if not source.declares_output(ref.output_name):
                raise UnresolvedReference(
                    node.id,
                    input_name,
                    ref,
                    f"node {ref.source_node_id!r} never declares output {ref.output_name!r}",
                )
        for dep in node.depends_on:
            if dep not in by_id:
                raise UnresolvedReference(node.id, "depends_on", dep, f"unknown node {dep!r}")
    return by_id


def _edges(nodes: list[StackNode]) -> dict[str, list[str]]:
    upstream: dict[str, list[str]] = {}
    for node in nodes:
        sources: list[str] = []
        for ref in node.inputs.values():
            if ref.source_node_id not in sources:
                sources.append(ref.source_node_id)
        for dep in node.depends_on:
            if dep not in sources:
                sources.append(dep)
        upstream[node.id] = sources
    return upstream


def _find_cycle(remaining: list[str], upstream: dict[str, list[str]]) -> list[str]:
    pending = set(remaining)
    for start in remaining:
        path: list[str] = []
        on_path: dict[str, int] = {}
        current = start
        while current not in on_path:
            on_path[current] = len(path)
            path.append(current)
            nxt = [s for s in upstream[current] if s in pending]
            if not nxt:
                break
            current = nxt[0]
        else:
            # Edges point at sources; reverse so the cycle reads in provisioning order.
            cycle = list(reversed(path[on_path[current]:]))
            return cycle + [cycle[0]]
    return list(remaining)


def build(nodes: Iterable[StackNode]) -> DeploymentPlan:
    node_list = list(nodes)
    by_id = _validate(node_list)
    upstream = _edges(node_list)

    downstream: dict[str, list[str]] = {node.id: [] for node in node_list}
    for node in node_list:
        for source in upstream[node.id]:
            downstream[source].append(node.id)

    in_degree = {node.id: len(upstream[node.id]) for node in node_list}
    position = {node.id: i for i, node in enumerate(node_list)}

    ranks: list[list[StackNode]] = []
    frontier = [node.id for node in node_list if in_degree[node.id] == 0]
    placed = 0
    while frontier:
        frontier.sort(key=lambda nid: position[nid])
        ranks.append([by_id[nid] for nid in frontier])
        placed += len(frontier)
        nxt: list[str] = []
        for nid in frontier:
            for dependent in downstream[nid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    nxt.append(dependent)
        frontier = nxt

    if placed != len(node_list):
        remaining = [node.id for node in node_list if in_degree[node.id] > 0]
        raise CyclicDependency(_find_cycle(remaining, upstream))

    return DeploymentPlan(ranks=ranks, _upstream=upstream, _downstream=downstream)
