"""
Stream Client - Runs a workflow on a remote server and replays its progress.

The NDJSON lines coming back from ``POST /api/run-workflow`` are decoded
into WorkflowEvents and published on a local EventBus, so in-process
observers see exactly what they would see for a local run.
"""

import logging
from typing import Any

import aiohttp

from blockflow.graph.workflow import WorkflowGraph
from blockflow.runtime.event_bus import EventBus
from blockflow.runtime.execution_state import ExecutionStatus, WorkflowExecution
from blockflow.runtime.ndjson import NDJSONDecoder

logger = logging.getLogger(__name__)


class WorkflowRequestError(Exception):
    """The server refused to start the run."""

    def __init__(self, status: int, error: str):
        super().__init__(f"HTTP {status}: {error}")
        self.status = status
        self.error = error


class RemoteWorkflowRunner:
    """
    Client for a blockflow server.

    Example:
        runner = RemoteWorkflowRunner("http://127.0.0.1:4000")
        bus = EventBus(trigger_id="t1")
        bus.on_update(lambda execution: print(execution.status))
        execution = await runner.run(graph, "t1", bus=bus)
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session

    @staticmethod
    def request_body(graph: WorkflowGraph, trigger_id: str) -> dict[str, Any]:
        return {
            "nodes": [node.model_dump(mode="json", by_alias=True) for node in graph.nodes],
            "edges": [edge.model_dump(mode="json", by_alias=True) for edge in graph.edges],
            "triggerNodeId": trigger_id,
        }

    async def run(
        self,
        graph: WorkflowGraph,
        trigger_id: str,
        bus: EventBus | None = None,
    ) -> WorkflowExecution:
        """
        Run ``graph`` remotely, publishing every streamed event on ``bus``.

        Returns the final execution state. If the stream ends without a
        terminal event the run is completed locally.

        Raises:
            WorkflowRequestError: the server answered with an error status
            aiohttp.ClientError: the connection failed
        """
        bus = bus or EventBus(trigger_id=trigger_id)
        url = f"{self.base_url}/api/run-workflow"
        body = self.request_body(graph, trigger_id)

        if self._session is not None:
            await self._stream(self._session, url, body, bus)
        else:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                await self._stream(session, url, body, bus)

        if not bus.execution.is_terminal:
            logger.warning(f"Stream for run {bus.run_id} ended without a complete event")
            await bus.emit_complete(ExecutionStatus.COMPLETED)
        return bus.execution

    async def _stream(
        self,
        session: aiohttp.ClientSession,
        url: str,
        body: dict[str, Any],
        bus: EventBus,
    ) -> None:
        async with session.post(url, json=body) as response:
            if response.status != 200:
                raise WorkflowRequestError(response.status, await self._error_message(response))

            decoder = NDJSONDecoder()
            async for chunk in response.content.iter_any():
                for event in decoder.feed(chunk):
                    await bus.publish(event)
            for event in decoder.flush():
                await bus.publish(event)

            if decoder.skipped:
                logger.debug(f"Skipped {decoder.skipped} malformed line(s) from {url}")

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        try:
            data = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return await response.text()
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return str(data)
