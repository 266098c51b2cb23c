"""
Execution Plan - Ordered, cycle-safe steps for a workflow run.

The planner:
1. Analyzes the subgraph reachable from the trigger into SCCs
2. Condenses SCCs into a DAG and orders it topologically (Kahn)
3. Expands each SCC into a step:
   - SingleStep: one node, executed once
   - CycleStep: a feedback loop, executed repeatedly up to max_iterations
4. Drops the trigger, whose payload is seeded before execution

Steps are created fresh for every run. A CycleStep carries convergence
state only while its own iteration loop runs.
"""

import heapq
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from blockflow.graph.scc import SCCAnalysis, analyze
from blockflow.graph.workflow import Node, Payload, WorkflowGraph

DEFAULT_MAX_ITERATIONS = 10


class StepType(StrEnum):
    """Kinds of execution steps."""

    SINGLE = "single"
    CYCLE = "cycle"


@dataclass
class SingleStep:
    """A node outside any feedback loop."""

    node: Node
    type: StepType = field(default=StepType.SINGLE, init=False)

    @property
    def node_ids(self) -> list[str]:
        return [self.node.id]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "nodes": self.node_ids}


@dataclass
class CycleStep:
    """A feedback loop. ``nodes[0]`` is the entry node used for convergence."""

    nodes: list[Node]
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    last_iteration_payload: Payload | None = None
    type: StepType = field(default=StepType.CYCLE, init=False)

    @property
    def entry(self) -> Node:
        return self.nodes[0]

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "nodes": self.node_ids,
            "max_iterations": self.max_iterations,
        }


ExecutionStep = SingleStep | CycleStep


def configured_max_iterations(node: Node) -> int | None:
    """Return the node's positive ``maxIterations`` override, if any."""
    raw = node.config.get("maxIterations")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _cycle_max_iterations(nodes: list[Node], default: int) -> int:
    for node in nodes:
        configured = configured_max_iterations(node)
        if configured:
            return configured
    return default


def _order_cycle_members(
    members: list[str],
    analysis: SCCAnalysis,
) -> list[str]:
    """
    Order SCC members by a DFS from the entry member.

    The entry is the first member (in discovery order) with an incoming edge
    from outside the SCC. Members the walk cannot reach are appended.
    """
    member_set = set(members)
    entry = members[0]
    for candidate in members:
        if any(
            candidate in targets and source not in member_set
            for source, targets in analysis.adjacency.items()
        ):
            entry = candidate
            break

    ordered: list[str] = []
    visited = {entry}
    ordered.append(entry)
    work = [iter(analysis.adjacency.get(entry, ()))]
    while work:
        advanced = False
        for target in work[-1]:
            if target in member_set and target not in visited:
                visited.add(target)
                ordered.append(target)
                work.append(iter(analysis.adjacency.get(target, ())))
                advanced = True
                break
        if not advanced:
            work.pop()

    ordered.extend(m for m in members if m not in visited)
    return ordered


def _topological_components(analysis: SCCAnalysis) -> list[int]:
    """Kahn's algorithm over the condensed graph, ties by discovery order."""
    comp_of = analysis.component_index()
    rank = {nid: i for i, nid in enumerate(analysis.reachable)}
    comp_rank = [min(rank[nid] for nid in comp) for comp in analysis.components]

    successors: dict[int, set[int]] = {i: set() for i in range(len(analysis.components))}
    for source, targets in analysis.adjacency.items():
        for target in targets:
            s, t = comp_of[source], comp_of[target]
            if s != t:
                successors[s].add(t)

    in_degree = dict.fromkeys(successors, 0)
    for targets in successors.values():
        for t in targets:
            in_degree[t] += 1

    ready = [(comp_rank[i], i) for i, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)
    order: list[int] = []
    while ready:
        _, current = heapq.heappop(ready)
        order.append(current)
        for nxt in successors[current]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                heapq.heappush(ready, (comp_rank[nxt], nxt))
    return order


def build_execution_plan(
    trigger_id: str,
    graph: WorkflowGraph,
    default_max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> list[ExecutionStep]:
    """
    Build the ordered step list for a run starting at ``trigger_id``.

    A graph with nothing reachable besides the trigger yields an empty plan.
    """
    if default_max_iterations < 1:
        default_max_iterations = DEFAULT_MAX_ITERATIONS

    analysis = analyze(trigger_id, graph)
    nodes = graph.node_map()
    rank = {nid: i for i, nid in enumerate(analysis.reachable)}
    plan: list[ExecutionStep] = []

    for comp_idx in _topological_components(analysis):
        members = sorted(analysis.components[comp_idx], key=rank.__getitem__)

        if len(members) == 1 and members[0] not in analysis.adjacency.get(members[0], []):
            plan.append(SingleStep(node=nodes[members[0]]))
            continue

        ordered = [nodes[nid] for nid in _order_cycle_members(members, analysis)]
        plan.append(
            CycleStep(
                nodes=ordered,
                max_iterations=_cycle_max_iterations(ordered, default_max_iterations),
            )
        )

    # The trigger's payload is pre-seeded, it is never a step
    stripped: list[ExecutionStep] = []
    for step in plan:
        if isinstance(step, SingleStep):
            if step.node.id != trigger_id:
                stripped.append(step)
            continue
        step.nodes = [n for n in step.nodes if n.id != trigger_id]
        if step.nodes:
            stripped.append(step)
    return stripped


def describe_plan(plan: list[ExecutionStep]) -> list[dict[str, Any]]:
    """JSON-friendly view of a plan."""
    return [step.to_dict() for step in plan]
