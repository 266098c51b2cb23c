"""
Workflow lifecycle events.

Each event maps one-to-one onto a line of the NDJSON wire format:

    {"type": "start", "blockId", "blockType", "name"}
    {"type": "progress", "blockId", "blockType", "name", "outputs"}
    {"type": "error", "blockId", "name", "error"}
    {"type": "loop_iteration", "iteration", "maxIterations", "nodes"}
    {"type": "loop_exit", "blockId", "name", "reason", "iterations", "nodes"}
    {"type": "complete", "status": "completed" | "failed"}
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    """Types of events published during a run."""

    START = "start"
    PROGRESS = "progress"
    ERROR = "error"
    LOOP_ITERATION = "loop_iteration"
    LOOP_EXIT = "loop_exit"
    COMPLETE = "complete"


class LoopExitReason(StrEnum):
    """Why a cycle step stopped iterating."""

    CONDITION = "condition"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"


@dataclass
class WorkflowEvent:
    """An event in a workflow run."""

    type: EventType
    node_id: str | None = None
    block_type: str | None = None
    name: str | None = None
    outputs: dict[str, Any] | None = None
    error: str | None = None
    status: str | None = None
    iteration: int | None = None
    max_iterations: int | None = None
    node_ids: list[str] | None = None
    reason: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the wire shape for this event type."""
        wire: dict[str, Any] = {"type": self.type.value}
        if self.type in (EventType.START, EventType.PROGRESS):
            wire.update(blockId=self.node_id, blockType=self.block_type, name=self.name)
            if self.type == EventType.PROGRESS:
                wire["outputs"] = self.outputs or {}
        elif self.type == EventType.ERROR:
            wire.update(blockId=self.node_id, name=self.name, error=self.error)
        elif self.type == EventType.LOOP_ITERATION:
            wire.update(
                iteration=self.iteration,
                maxIterations=self.max_iterations,
                nodes=list(self.node_ids or []),
            )
        elif self.type == EventType.LOOP_EXIT:
            wire.update(
                blockId=self.node_id,
                name=self.name,
                reason=self.reason,
                iterations=self.iteration,
                nodes=list(self.node_ids or []),
            )
        elif self.type == EventType.COMPLETE:
            wire["status"] = self.status
        return wire

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "WorkflowEvent":
        """
        Parse a wire object.

        Raises:
            ValueError: unknown or missing ``type``
        """
        event_type = EventType(data.get("type"))
        outputs = data.get("outputs")
        nodes = data.get("nodes")
        return cls(
            type=event_type,
            node_id=data.get("blockId"),
            block_type=data.get("blockType"),
            name=data.get("name"),
            outputs=outputs if isinstance(outputs, dict) else None,
            error=data.get("error"),
            status=data.get("status"),
            iteration=data.get("iteration", data.get("iterations")),
            max_iterations=data.get("maxIterations"),
            node_ids=list(nodes) if isinstance(nodes, list) else None,
            reason=data.get("reason"),
        )
