"""Validation for workflow graphs and block outputs.

Graphs are checked before planning so that malformed input is rejected
before any node executes. Block outputs are checked before they are written
to the payload cache so garbage never propagates downstream.
"""

import logging
from dataclasses import dataclass
from typing import Any

from blockflow.graph.errors import BlockExecutionError, GraphValidationError
from blockflow.graph.workflow import NodeCategory, WorkflowGraph

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of validating a graph or an output."""

    success: bool
    errors: list[str]

    @property
    def error(self) -> str:
        """Get combined error message."""
        return "; ".join(self.errors) if self.errors else ""


class GraphValidator:
    """
    Structural checks on a workflow graph.

    Edges between existing nodes that are unreachable from the trigger are
    not errors; the planner ignores them. Edges naming node ids that do not
    exist at all are dangling and reject the graph.
    """

    def validate(self, graph: WorkflowGraph, trigger_id: str) -> ValidationResult:
        errors: list[str] = []

        seen: set[str] = set()
        for node in graph.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen.add(node.id)

        trigger = graph.get_node(trigger_id)
        if trigger is None:
            errors.append("Trigger node not found")
        elif trigger.category != NodeCategory.TRIGGER:
            # Any node may start a run, but it should look like one
            logger.debug(f"Run started from non-trigger node '{trigger_id}' ({trigger.category})")

        for edge in graph.edges:
            if edge.source not in seen:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in seen:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")

        return ValidationResult(success=not errors, errors=errors)

    def ensure_valid(self, graph: WorkflowGraph, trigger_id: str) -> None:
        """Raise GraphValidationError if the graph cannot be planned."""
        result = self.validate(graph, trigger_id)
        if not result.success:
            raise GraphValidationError(result.errors)


def validate_block_output(block_id: str, outputs: Any) -> dict[str, Any]:
    """
    Check that a block runner returned a mapping with string keys.

    Returns the outputs as a plain dict.

    Raises:
        BlockExecutionError: if the outputs are not a mapping
    """
    if not isinstance(outputs, dict):
        raise BlockExecutionError(
            f"Block '{block_id}' returned {type(outputs).__name__}, expected an object",
            block_id=block_id,
        )
    bad_keys = [k for k in outputs if not isinstance(k, str)]
    if bad_keys:
        raise BlockExecutionError(
            f"Block '{block_id}' returned non-string output keys: {bad_keys}",
            block_id=block_id,
        )
    return dict(outputs)
