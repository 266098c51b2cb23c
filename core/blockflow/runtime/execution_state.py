"""
Execution State - What an observer knows about a run.

``apply_event`` is the only place where a WorkflowExecution changes. The
in-process executor and the NDJSON client both feed events through it, so
the two delivery paths cannot drift apart.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from blockflow.runtime.events import EventType, WorkflowEvent


class ExecutionStatus(StrEnum):
    """Status of a run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LastOutput(BaseModel):
    """Most recent node output seen by the observer."""

    node_id: str
    name: str | None = None
    outputs: dict[str, Any] = Field(default_factory=dict)


class LoopInfo(BaseModel):
    """Current cycle iteration, while a cycle step is running."""

    iteration: int
    max_iterations: int
    node_ids: list[str] = Field(default_factory=list)


class WorkflowExecution(BaseModel):
    """
    Observable state of a single run.

    Mutated in place while ``status`` is running; frozen in practice once a
    terminal status is reached because ``apply_event`` ignores later events.
    """

    run_id: str
    trigger_id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    active_node_ids: list[str] = Field(default_factory=list)
    last_output: LastOutput | None = None
    loop_info: LoopInfo | None = None
    error: str | None = None

    model_config = {"extra": "allow"}

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    def snapshot(self) -> "WorkflowExecution":
        """Deep copy handed to observers."""
        return self.model_copy(deep=True)


def new_run_id() -> str:
    return f"run_{datetime.now().strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:8]}"


def start_execution(trigger_id: str, run_id: str | None = None) -> WorkflowExecution:
    """Initial state of a run: running, with the trigger active."""
    return WorkflowExecution(
        run_id=run_id or new_run_id(),
        trigger_id=trigger_id,
        active_node_ids=[trigger_id] if trigger_id else [],
    )


def _deactivate(execution: WorkflowExecution, node_ids: list[str]) -> None:
    execution.active_node_ids = [n for n in execution.active_node_ids if n not in node_ids]


def apply_event(execution: WorkflowExecution, event: WorkflowEvent) -> WorkflowExecution:
    """
    Apply one lifecycle event to the execution state, in place.

    Returns the same object for chaining. Events arriving after a terminal
    status are ignored.
    """
    if execution.is_terminal:
        return execution

    execution.timestamp = event.timestamp

    if event.type == EventType.START and event.node_id:
        if event.node_id not in execution.active_node_ids:
            execution.active_node_ids.append(event.node_id)

    elif event.type == EventType.PROGRESS and event.node_id:
        _deactivate(execution, [event.node_id])
        execution.last_output = LastOutput(
            node_id=event.node_id,
            name=event.name,
            outputs=dict(event.outputs or {}),
        )

    elif event.type == EventType.ERROR:
        if event.node_id:
            _deactivate(execution, [event.node_id])
        execution.error = event.error

    elif event.type == EventType.LOOP_ITERATION:
        node_ids = list(event.node_ids or [])
        execution.loop_info = LoopInfo(
            iteration=event.iteration or 0,
            max_iterations=event.max_iterations or 0,
            node_ids=node_ids,
        )
        execution.active_node_ids = node_ids

    elif event.type == EventType.LOOP_EXIT:
        execution.loop_info = None
        _deactivate(execution, list(event.node_ids or []))

    elif event.type == EventType.COMPLETE:
        execution.status = (
            ExecutionStatus.FAILED
            if event.status == ExecutionStatus.FAILED
            else ExecutionStatus.COMPLETED
        )
        execution.active_node_ids = []
        execution.loop_info = None

    return execution
