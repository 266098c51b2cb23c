"""
Workflow Executor - Runs an execution plan against a payload cache.

The executor:
1. Validates the graph and builds the plan
2. Seeds the trigger payload
3. Runs each step in order:
   - SingleStep: merge upstream, execute once
   - CycleStep: iterate the members until a condition fails, the entry
     payload stops changing, or max_iterations is reached
4. Publishes every lifecycle transition on the run's EventBus

All nodes run sequentially on the calling task. Every run gets a fresh
cache, plan and bus, so one executor can serve many runs.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from blockflow.config import EngineConfig
from blockflow.graph.errors import (
    WORKFLOW_SENTINEL_ID,
    ConditionFailedError,
    GraphValidationError,
    WorkflowError,
)
from blockflow.graph.node_executor import NodeExecutor, trigger_payload
from blockflow.graph.plan import CycleStep, ExecutionStep, SingleStep, build_execution_plan
from blockflow.graph.validator import GraphValidator
from blockflow.graph.workflow import Node, Payload, WorkflowGraph
from blockflow.observability import set_trace_context
from blockflow.runtime.event_bus import EventBus
from blockflow.runtime.events import LoopExitReason
from blockflow.runtime.execution_state import ExecutionStatus

if TYPE_CHECKING:
    from blockflow.blocks.catalog import BlockCatalog
    from blockflow.blocks.runner import BlockRunner

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of running a workflow."""

    run_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    error: str | None = None
    payloads: dict[str, Payload] = field(default_factory=dict)  # Final payload cache
    path: list[str] = field(default_factory=list)  # Node IDs executed, in order
    failed_nodes: list[str] = field(default_factory=list)
    blocked_nodes: list[str] = field(default_factory=list)  # Skipped after upstream failure
    iterations: dict[str, int] = field(default_factory=dict)  # {cycle entry id: iterations}
    loop_exits: dict[str, LoopExitReason] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def had_node_failures(self) -> bool:
        """True if the run completed but some nodes failed or were skipped."""
        return bool(self.failed_nodes or self.blocked_nodes)


def merge_upstream(node_id: str, graph: WorkflowGraph, cache: dict[str, Payload]) -> Payload:
    """
    Union of the cached payloads of ``node_id``'s direct predecessors.

    Edges are visited in definition order and the first payload to write a
    key keeps it. Predecessors without a cached payload contribute nothing.
    """
    merged: Payload = {}
    for edge in graph.get_incoming_edges(node_id):
        payload = cache.get(edge.source)
        if payload is None:
            continue
        for key, value in payload.items():
            merged.setdefault(key, value)
    return merged


def payload_fingerprint(payload: Payload | None) -> str | None:
    """Canonical JSON used to detect convergence."""
    if payload is None:
        return None
    return json.dumps(payload, sort_keys=True, default=str)


@dataclass
class _Run:
    """Mutable state owned by one run."""

    graph: WorkflowGraph
    bus: EventBus
    result: ExecutionResult
    cache: dict[str, Payload] = field(default_factory=dict)
    unavailable: set[str] = field(default_factory=set)  # Failed or blocked node IDs


class _RunHalted(Exception):
    """A condition outside any cycle rejected its payload."""


class WorkflowExecutor:
    """
    Runs workflow graphs.

    Example:
        executor = WorkflowExecutor(block_runner=create_default_runner())
        bus = EventBus(trigger_id="trigger-1")
        bus.on_update(lambda execution: print(execution.active_node_ids))
        result = await executor.run(graph, "trigger-1", bus=bus)
    """

    def __init__(
        self,
        block_runner: "BlockRunner | None" = None,
        node_executor: NodeExecutor | None = None,
        catalog: "BlockCatalog | None" = None,
        config: EngineConfig | None = None,
        validator: GraphValidator | None = None,
    ):
        if node_executor is None:
            if block_runner is None:
                raise ValueError("WorkflowExecutor needs a block_runner or a node_executor")
            node_executor = NodeExecutor(block_runner=block_runner, catalog=catalog)
        self.node_executor = node_executor
        self.config = config or EngineConfig()
        self.validator = validator or GraphValidator()

    def plan(self, graph: WorkflowGraph, trigger_id: str) -> list[ExecutionStep]:
        """
        Validate ``graph`` and build its plan.

        Raises:
            GraphValidationError: if the graph is malformed
        """
        self.validator.ensure_valid(graph, trigger_id)
        if graph.get_node(trigger_id) is None:
            raise GraphValidationError(["Trigger node not found"])
        return build_execution_plan(
            trigger_id, graph, default_max_iterations=self.config.default_max_iterations
        )

    async def run(
        self,
        graph: WorkflowGraph,
        trigger_id: str,
        bus: EventBus | None = None,
    ) -> ExecutionResult:
        """
        Execute ``graph`` starting at ``trigger_id``.

        Progress is published on ``bus`` (a fresh one is created if omitted).
        The bus always ends with exactly one ``complete`` event.
        """
        bus = bus or EventBus(trigger_id=trigger_id)
        run = _Run(graph=graph, bus=bus, result=ExecutionResult(run_id=bus.run_id))
        set_trace_context(run_id=bus.run_id, trigger_id=trigger_id)

        try:
            plan = self.plan(graph, trigger_id)
        except GraphValidationError as e:
            logger.error(f"❌ Workflow rejected: {e.message}")
            await bus.emit_node_error(WORKFLOW_SENTINEL_ID, e.message)
            return await self._finish(run, ExecutionStatus.FAILED, e.message)

        logger.info(
            f"🚀 Starting run {bus.run_id}: {len(plan)} step(s) from trigger '{trigger_id}'"
        )

        try:
            await self._seed_trigger(run, graph.node_map()[trigger_id])
            for index, step in enumerate(plan):
                if index and self.config.step_delay_ms > 0:
                    await asyncio.sleep(self.config.step_delay_ms / 1000)
                if isinstance(step, SingleStep):
                    await self._run_single(run, step.node)
                else:
                    await self._run_cycle(run, step)
        except _RunHalted as e:
            return await self._finish(run, ExecutionStatus.FAILED, str(e))
        except Exception as e:
            logger.exception(f"Run {bus.run_id} crashed")
            await bus.emit_node_error(WORKFLOW_SENTINEL_ID, str(e) or type(e).__name__)
            return await self._finish(run, ExecutionStatus.FAILED, str(e))

        return await self._finish(run, ExecutionStatus.COMPLETED)

    async def _finish(
        self,
        run: _Run,
        status: ExecutionStatus,
        error: str | None = None,
    ) -> ExecutionResult:
        result = run.result
        result.status = status
        result.error = error
        result.payloads = dict(run.cache)
        await run.bus.emit_complete(status)
        if status == ExecutionStatus.COMPLETED:
            logger.info(f"✓ Run {result.run_id} completed ({len(result.path)} node executions)")
        else:
            logger.info(f"✗ Run {result.run_id} failed: {error}")
        return result

    async def _seed_trigger(self, run: _Run, trigger: Node) -> None:
        payload = trigger_payload(trigger)
        run.cache[trigger.id] = payload
        run.result.path.append(trigger.id)
        await run.bus.emit_node_started(trigger.id, trigger.block_type, trigger.name)
        await run.bus.emit_node_progress(trigger.id, payload, trigger.block_type, trigger.name)

    def _blocking_predecessor(self, run: _Run, node: Node) -> str | None:
        """Return a direct predecessor that produced no output, under the "block" policy."""
        if self.config.on_node_error != "block":
            return None
        for edge in run.graph.get_incoming_edges(node.id):
            if edge.source in run.unavailable and edge.source != node.id:
                return edge.source
        return None

    async def _execute_node(self, run: _Run, node: Node) -> Payload:
        """
        Execute one node and publish its lifecycle.

        Returns the output payload, which is also written to the cache.

        Raises:
            ConditionFailedError: unpublished, the caller decides what it means
            WorkflowError: for any other node failure, after publishing it
        """
        set_trace_context(node_id=node.id)
        bus = run.bus
        upstream = merge_upstream(node.id, run.graph, run.cache)
        await bus.emit_node_started(node.id, node.block_type, node.name)
        run.result.path.append(node.id)
        try:
            output = await self.node_executor.execute(node, upstream)
        except ConditionFailedError:
            raise
        except WorkflowError as e:
            await bus.emit_node_error(node.id, e.message, node.name)
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            await bus.emit_node_error(node.id, message, node.name)
            raise WorkflowError(message, node_id=node.id) from e
        finally:
            set_trace_context(node_id=None)

        run.cache[node.id] = output
        run.unavailable.discard(node.id)
        await bus.emit_node_progress(node.id, output, node.block_type, node.name)
        return output

    def _mark_failed(self, run: _Run, node: Node, error: WorkflowError) -> None:
        logger.warning(f"Node '{node.id}' failed: {error.message}")
        run.unavailable.add(node.id)
        run.result.failed_nodes.append(node.id)

    async def _skip_blocked(self, run: _Run, node: Node, blocker: str) -> None:
        message = f"Skipped: upstream node '{blocker}' did not produce output"
        logger.info(f"⏭ {node.id}: {message}")
        run.unavailable.add(node.id)
        run.result.blocked_nodes.append(node.id)
        await run.bus.emit_node_error(node.id, message, node.name)

    async def _run_single(self, run: _Run, node: Node) -> None:
        blocker = self._blocking_predecessor(run, node)
        if blocker is not None:
            await self._skip_blocked(run, node, blocker)
            return

        try:
            await self._execute_node(run, node)
        except ConditionFailedError as e:
            logger.info(f"Condition '{node.id}' stopped the run: {e.message}")
            await run.bus.emit_node_error(node.id, e.message, node.name)
            raise _RunHalted(e.message) from e
        except WorkflowError as e:
            self._mark_failed(run, node, e)

    async def _run_cycle(self, run: _Run, step: CycleStep) -> None:
        """Drive one feedback loop to its exit."""
        bus = run.bus
        entry = step.entry
        node_ids = step.node_ids
        reason = LoopExitReason.MAX_ITERATIONS
        iteration = 0
        step.last_iteration_payload = None

        blocker = self._blocking_predecessor(run, entry)
        if blocker is not None:
            for node in step.nodes:
                await self._skip_blocked(run, node, blocker)
            return

        logger.info(f"🔄 Entering cycle {node_ids} (max {step.max_iterations} iterations)")

        while iteration < step.max_iterations:
            iteration += 1
            await bus.emit_loop_iteration(iteration, step.max_iterations, node_ids)

            exit_reason = await self._run_iteration(run, step)
            if exit_reason is not None:
                reason = exit_reason
                break

            current = payload_fingerprint(run.cache.get(entry.id))
            previous = payload_fingerprint(step.last_iteration_payload)
            if iteration > 1 and previous is not None and current == previous:
                reason = LoopExitReason.CONVERGED
                break
            if entry.id in run.cache:
                step.last_iteration_payload = dict(run.cache[entry.id])

        run.result.iterations[entry.id] = iteration
        run.result.loop_exits[entry.id] = reason
        logger.info(f"Cycle at '{entry.id}' exited after {iteration} iteration(s): {reason}")
        await bus.emit_loop_exit(entry.id, reason, iteration, node_ids, entry.name)

    async def _run_iteration(self, run: _Run, step: CycleStep) -> LoopExitReason | None:
        """Run every member once. Returns an exit reason if the loop must stop."""
        for node in step.nodes:
            if node is not step.entry:
                blocker = self._blocking_predecessor(run, node)
                if blocker is not None:
                    await self._skip_blocked(run, node, blocker)
                    return LoopExitReason.ERROR
            try:
                await self._execute_node(run, node)
            except ConditionFailedError as e:
                # A rejected payload never flows past the exit condition
                logger.info(f"Condition '{node.id}' ended the cycle: {e.message}")
                run.unavailable.add(node.id)
                return LoopExitReason.CONDITION
            except WorkflowError as e:
                self._mark_failed(run, node, e)
                return LoopExitReason.ERROR
        return None


async def run_workflow(
    graph: WorkflowGraph | dict[str, Any],
    trigger_id: str,
    block_runner: "BlockRunner",
    bus: EventBus | None = None,
    config: EngineConfig | None = None,
) -> ExecutionResult:
    """Convenience wrapper: build an executor and run ``graph`` once."""
    if isinstance(graph, dict):
        graph = WorkflowGraph.model_validate(graph)
    executor = WorkflowExecutor(block_runner=block_runner, config=config)
    return await executor.run(graph, trigger_id, bus=bus)


__all__ = [
    "ExecutionResult",
    "WorkflowExecutor",
    "merge_upstream",
    "payload_fingerprint",
    "run_workflow",
]
