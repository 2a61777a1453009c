"""Rebuild the part of a graph reachable from a given node.

A debug run may start anywhere. The reachable subgraph is collected with a
breadth-first walk over edges and branch targets, re-added node by node,
and wired to START so it can be compiled and invoked on its own.
"""

from __future__ import annotations

from collections import deque
from typing import Any


from einodev.compose.graph import Graph
from einodev.compose.types import END, START, GraphInfo
from einodev.errors import GraphStructureError
from einodev.graph.options import GraphOption
from einodev.utils.log import get_logger

logger = get_logger(__name__)


def build_dev_graph(info: GraphInfo, from_node: str, option: GraphOption | None = None) -> Graph:
    """A new graph holding ``from_node`` and everything reachable from it."""
    if from_node == END:
        raise GraphStructureError("can not start from end node")
    if from_node != START and from_node not in info.nodes:
        raise GraphStructureError(f"node={from_node} not found")

    option = option or GraphOption()
    gen_state = option.gen_state or info.gen_local_state
    graph = Graph(Any, Any, gen_local_state=gen_state, state_type=info.state_type)

    added: set[str] = set()

    def ensure_node(key: str) -> None:
        if key in added or key in (START, END):
            return
        node = info.nodes.get(key)
        if node is None:
            raise GraphStructureError(f"node={key} not found")
        graph.add_node_from_info(key, node)
        added.add(key)

    queue: deque[str] = deque([from_node])
    visited: set[str] = set()
    while queue:
        current = queue.popleft()
        if current in visited or current == END:
            continue
        ensure_node(current)

        for target in info.edges.get(current, ()):
            ensure_node(target)
            graph.add_edge(current, target)
            queue.append(target)

        for branch in info.branches.get(current, ()):
            for target in branch.end_nodes:
                ensure_node(target)
                queue.append(target)
            graph.add_branch(current, branch)

        visited.add(current)

    if from_node != START:
        graph.add_edge(START, from_node)

    logger.debug("dev_graph_built", graph=info.name, from_node=from_node, nodes=sorted(added))
    return graph
