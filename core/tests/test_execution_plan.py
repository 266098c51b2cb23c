"""
Tests for execution planning.

Covers:
- Topological order, ties broken by discovery order
- Trigger stripped from the plan
- Cycle steps: membership, entry selection, member order
- maxIterations resolution (node config, numeric strings, default)
- Self-loops become cycle steps
- Unreachable nodes never planned
"""

from blockflow.graph.plan import (
    DEFAULT_MAX_ITERATIONS,
    CycleStep,
    SingleStep,
    build_execution_plan,
    configured_max_iterations,
    describe_plan,
)
from blockflow.graph.workflow import Edge, Node, WorkflowGraph


def _graph(nodes, edges):
    """nodes: list of ids or (id, config) tuples; edges: list of (source, target)."""
    built = []
    for entry in nodes:
        node_id, config = entry if isinstance(entry, tuple) else (entry, {})
        category = "trigger" if node_id == "t" else "ai"
        built.append(Node(id=node_id, category=category, config=config))
    return WorkflowGraph(
        nodes=built,
        edges=[Edge(id=f"e{i}", source=s, target=t) for i, (s, t) in enumerate(edges)],
    )


def _shape(plan):
    return [
        step.node.id if isinstance(step, SingleStep) else tuple(step.node_ids) for step in plan
    ]


class TestLinearPlans:
    def test_chain(self):
        graph = _graph(["t", "a", "b", "c"], [("t", "a"), ("a", "b"), ("b", "c")])
        assert _shape(build_execution_plan("t", graph)) == ["a", "b", "c"]

    def test_trigger_only(self):
        assert build_execution_plan("t", _graph(["t"], [])) == []

    def test_diamond_respects_dependencies(self):
        graph = _graph(
            ["t", "a", "b", "c"],
            [("t", "a"), ("t", "b"), ("a", "c"), ("b", "c")],
        )
        assert _shape(build_execution_plan("t", graph)) == ["a", "b", "c"]

    def test_ties_broken_by_discovery_order(self):
        graph = _graph(["t", "z", "y", "x"], [("t", "z"), ("t", "y"), ("t", "x")])
        assert _shape(build_execution_plan("t", graph)) == ["z", "y", "x"]

    def test_longer_branch_does_not_run_early(self):
        # t -> a -> b -> d, t -> c -> d
        graph = _graph(
            ["t", "a", "b", "c", "d"],
            [("t", "a"), ("a", "b"), ("b", "d"), ("t", "c"), ("c", "d")],
        )
        shape = _shape(build_execution_plan("t", graph))
        assert shape.index("d") == len(shape) - 1
        assert shape.index("a") < shape.index("b")

    def test_unreachable_nodes_skipped(self):
        graph = _graph(["t", "a", "orphan"], [("t", "a"), ("orphan", "a")])
        assert _shape(build_execution_plan("t", graph)) == ["a"]

    def test_every_edge_goes_forward(self):
        edges = [("t", "a"), ("t", "b"), ("a", "c"), ("b", "c"), ("c", "d"), ("a", "d")]
        graph = _graph(["t", "a", "b", "c", "d"], edges)
        position = {nid: i for i, nid in enumerate(_shape(build_execution_plan("t", graph)))}
        position["t"] = -1
        for source, target in edges:
            assert position[source] < position[target]


class TestCyclePlans:
    def test_two_node_cycle(self):
        graph = _graph(
            ["t", "a", "b", "c"],
            [("t", "a"), ("a", "b"), ("b", "a"), ("b", "c")],
        )
        plan = build_execution_plan("t", graph)
        assert _shape(plan) == [("a", "b"), "c"]
        cycle = plan[0]
        assert isinstance(cycle, CycleStep)
        assert cycle.entry.id == "a"
        assert cycle.max_iterations == DEFAULT_MAX_ITERATIONS
        assert cycle.last_iteration_payload is None

    def test_entry_is_first_member_reached_from_outside(self):
        # Loop b -> c -> b, entered at c
        graph = _graph(
            ["t", "c", "b"],
            [("t", "c"), ("c", "b"), ("b", "c")],
        )
        plan = build_execution_plan("t", graph)
        assert plan[0].node_ids == ["c", "b"]

    def test_members_follow_dfs_from_entry(self):
        # BFS order would be a, b, c, d
        graph = _graph(
            ["t", "a", "b", "c", "d"],
            [("t", "a"), ("a", "b"), ("a", "c"), ("b", "d"), ("d", "a"), ("c", "a")],
        )
        plan = build_execution_plan("t", graph)
        assert plan[0].node_ids == ["a", "b", "d", "c"]

    def test_self_loop_is_cycle_step(self):
        graph = _graph(["t", "a", "b"], [("t", "a"), ("a", "a"), ("a", "b")])
        plan = build_execution_plan("t", graph)
        assert isinstance(plan[0], CycleStep)
        assert plan[0].node_ids == ["a"]
        assert isinstance(plan[1], SingleStep)

    def test_max_iterations_from_member_config(self):
        graph = _graph(
            ["t", "a", ("b", {"maxIterations": "3"})],
            [("t", "a"), ("a", "b"), ("b", "a")],
        )
        assert build_execution_plan("t", graph)[0].max_iterations == 3

    def test_non_positive_max_iterations_falls_back(self):
        graph = _graph(
            ["t", ("a", {"maxIterations": 0}), ("b", {"maxIterations": -2})],
            [("t", "a"), ("a", "b"), ("b", "a")],
        )
        plan = build_execution_plan("t", graph, default_max_iterations=4)
        assert plan[0].max_iterations == 4

    def test_trigger_inside_cycle_is_stripped(self):
        graph = _graph(["t", "a"], [("t", "a"), ("a", "t")])
        plan = build_execution_plan("t", graph)
        assert len(plan) == 1
        assert plan[0].node_ids == ["a"]

    def test_downstream_of_cycle_comes_after(self):
        graph = _graph(
            ["t", "a", "b", "c", "d"],
            [("t", "a"), ("a", "b"), ("b", "a"), ("b", "c"), ("t", "d")],
        )
        shape = _shape(build_execution_plan("t", graph))
        assert shape.index(("a", "b")) < shape.index("c")


class TestHelpers:
    def test_configured_max_iterations(self):
        assert configured_max_iterations(Node(id="n", category="ai", config={})) is None
        assert (
            configured_max_iterations(Node(id="n", category="ai", config={"maxIterations": "5"}))
            == 5
        )
        assert (
            configured_max_iterations(Node(id="n", category="ai", config={"maxIterations": "x"}))
            is None
        )
        assert (
            configured_max_iterations(Node(id="n", category="ai", config={"maxIterations": True}))
            is None
        )

    def test_describe_plan(self):
        graph = _graph(["t", "a", "b", "c"], [("t", "a"), ("a", "b"), ("b", "a"), ("a", "c")])
        assert describe_plan(build_execution_plan("t", graph, default_max_iterations=2)) == [
            {"type": "cycle", "nodes": ["a", "b"], "max_iterations": 2},
            {"type": "single", "nodes": ["c"]},
        ]
