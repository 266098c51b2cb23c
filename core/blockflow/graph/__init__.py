"""Graph model, planning and execution."""

from blockflow.graph.errors import (
    WORKFLOW_SENTINEL_ID,
    BlockExecutionError,
    ConditionFailedError,
    GraphValidationError,
    WorkflowError,
)
from blockflow.graph.executor import ExecutionResult, WorkflowExecutor, run_workflow
from blockflow.graph.node_executor import NodeExecutor, ResultStore
from blockflow.graph.plan import (
    CycleStep,
    ExecutionStep,
    SingleStep,
    StepType,
    build_execution_plan,
    describe_plan,
)
from blockflow.graph.validator import GraphValidator, ValidationResult
from blockflow.graph.workflow import Edge, Node, NodeCategory, Payload, WorkflowGraph

__all__ = [
    # Model
    "Node",
    "NodeCategory",
    "Edge",
    "WorkflowGraph",
    "Payload",
    # Planning
    "GraphValidator",
    "ValidationResult",
    "build_execution_plan",
    "describe_plan",
    "ExecutionStep",
    "SingleStep",
    "CycleStep",
    "StepType",
    # Execution
    "NodeExecutor",
    "ResultStore",
    "WorkflowExecutor",
    "ExecutionResult",
    "run_workflow",
    # Errors
    "WORKFLOW_SENTINEL_ID",
    "WorkflowError",
    "GraphValidationError",
    "ConditionFailedError",
    "BlockExecutionError",
]
