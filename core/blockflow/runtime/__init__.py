"""Run state, progress events and their transports.

The HTTP server and the stream client import the graph executor, so they are
imported from their own modules:

    from blockflow.runtime.workflow_server import WorkflowServer
    from blockflow.runtime.stream_client import RemoteWorkflowRunner
"""

from blockflow.runtime.event_bus import EventBus
from blockflow.runtime.events import EventType, LoopExitReason, WorkflowEvent
from blockflow.runtime.execution_state import (
    ExecutionStatus,
    WorkflowExecution,
    apply_event,
    start_execution,
)
from blockflow.runtime.ndjson import NDJSONDecoder, encode_event

__all__ = [
    "EventBus",
    "EventType",
    "LoopExitReason",
    "WorkflowEvent",
    "ExecutionStatus",
    "WorkflowExecution",
    "apply_event",
    "start_execution",
    "NDJSONDecoder",
    "encode_event",
]
