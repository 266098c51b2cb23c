"""Exceptions raised while planning and executing workflows."""

WORKFLOW_SENTINEL_ID = "__workflow__"


class WorkflowError(Exception):
    """Base class for workflow engine errors.

    ``node_id`` localizes the error for progress reporting. Planning-level
    errors use the ``__workflow__`` sentinel.
    """

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id or WORKFLOW_SENTINEL_ID


class GraphValidationError(WorkflowError):
    """The graph cannot be planned (missing trigger, dangling edges, ...)."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) if errors else "Invalid workflow graph")
        self.errors = errors


class ConditionFailedError(WorkflowError):
    """A condition node rejected its upstream payload.

    Outside a cycle this halts the run. Inside a cycle it is the loop exit.
    """


class BlockExecutionError(WorkflowError):
    """A block runner call failed."""

    def __init__(self, message: str, block_id: str | None = None, node_id: str | None = None):
        super().__init__(message, node_id=node_id)
        self.block_id = block_id
