"""
Strongly connected component analysis for workflow graphs.

Feedback loops ("retry until confidence is high enough") show up as SCCs
with more than one node, or as a single node with a self-edge. Only the part
of the graph reachable from the trigger is analyzed; unreachable nodes never
execute and never error.

Tarjan's algorithm is run with an explicit work stack so that long chains
cannot hit the interpreter recursion limit.
"""

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from blockflow.graph.workflow import WorkflowGraph


@dataclass
class SCCAnalysis:
    """Reachable subgraph of a run and its strongly connected components."""

    trigger_id: str
    reachable: list[str] = field(default_factory=list)  # BFS discovery order
    adjacency: dict[str, list[str]] = field(default_factory=dict)
    components: list[list[str]] = field(default_factory=list)  # reverse topological order

    def component_index(self) -> dict[str, int]:
        """Map node id -> index of its component."""
        return {nid: i for i, comp in enumerate(self.components) for nid in comp}


def reachable_nodes(
    trigger_id: str,
    graph: WorkflowGraph,
) -> tuple[list[str], dict[str, list[str]]]:
    """
    Breadth-first walk over outgoing edges from the trigger.

    Edges pointing at unknown node ids are ignored.

    Returns:
        (node ids in discovery order, adjacency restricted to those nodes)
    """
    known = set(graph.node_map())
    if trigger_id not in known:
        return [], {}

    outgoing: dict[str, list[str]] = {}
    for edge in graph.edges:
        if edge.source in known and edge.target in known:
            targets = outgoing.setdefault(edge.source, [])
            if edge.target not in targets:
                targets.append(edge.target)

    order: list[str] = []
    seen = {trigger_id}
    queue = deque([trigger_id])
    while queue:
        current = queue.popleft()
        order.append(current)
        for target in outgoing.get(current, []):
            if target not in seen:
                seen.add(target)
                queue.append(target)

    adjacency = {nid: list(outgoing.get(nid, [])) for nid in order}
    return order, adjacency


def strongly_connected_components(
    node_ids: Iterable[str],
    adjacency: dict[str, list[str]],
) -> list[list[str]]:
    """
    Tarjan's SCC decomposition.

    Components are returned in the order they finish, which is reverse
    topological order of the condensed graph (sinks first).
    """
    counter = 0
    indices: dict[str, int] = {}
    lowlinks: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []

    for root in node_ids:
        if root in indices:
            continue

        indices[root] = lowlinks[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(adjacency.get(root, ())))]

        while work:
            v, neighbors = work[-1]
            descended = False
            for w in neighbors:
                if w not in indices:
                    indices[w] = lowlinks[w] = counter
                    counter += 1
                    stack.append(w)
                    on_stack.add(w)
                    work.append((w, iter(adjacency.get(w, ()))))
                    descended = True
                    break
                if w in on_stack:
                    lowlinks[v] = min(lowlinks[v], indices[w])
            if descended:
                continue

            # v is finished
            work.pop()
            if work:
                parent = work[-1][0]
                lowlinks[parent] = min(lowlinks[parent], lowlinks[v])

            if lowlinks[v] == indices[v]:
                component: list[str] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    component.append(w)
                    if w == v:
                        break
                components.append(component)

    return components


def analyze(trigger_id: str, graph: WorkflowGraph) -> SCCAnalysis:
    """Partition the subgraph reachable from ``trigger_id`` into SCCs."""
    order, adjacency = reachable_nodes(trigger_id, graph)
    return SCCAnalysis(
        trigger_id=trigger_id,
        reachable=order,
        adjacency=adjacency,
        components=strongly_connected_components(order, adjacency),
    )
