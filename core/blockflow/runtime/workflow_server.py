"""
Workflow HTTP Server - Runs workflows and streams their progress as NDJSON.

Uses aiohttp for an embedded HTTP server that runs within the existing
asyncio loop. Each POST to ``/api/run-workflow`` gets its own EventBus; an
NDJSON writer subscribed to that bus turns every lifecycle event into one
line of the response body.

Routes:
    POST /api/run-workflow  {nodes, edges, triggerNodeId} -> NDJSON stream
    POST /api/run-block     {blockId, inputs}             -> {"outputs"}
    GET  /api/blocks                                      -> catalog listing
    GET  /health
"""

import json
import logging

from aiohttp import web
from pydantic import ValidationError

from blockflow.blocks.catalog import BlockCatalog
from blockflow.blocks.runner import BlockRunner
from blockflow.config import EngineConfig, ServerConfig
from blockflow.graph.errors import BlockExecutionError
from blockflow.graph.executor import WorkflowExecutor
from blockflow.graph.workflow import WorkflowGraph
from blockflow.runtime.event_bus import EventBus
from blockflow.runtime.events import WorkflowEvent
from blockflow.runtime.ndjson import NDJSON_CONTENT_TYPE, encode_event

logger = logging.getLogger(__name__)

MISSING_FIELDS_ERROR = "nodes, edges, and triggerNodeId required"
TRIGGER_NOT_FOUND_ERROR = "Trigger node not found"


class NDJSONStreamWriter:
    """
    EventBus subscriber that writes each event to a streaming response.

    A client disconnect closes the writer silently; the run keeps going to
    its terminal state, it just has nobody left to tell.
    """

    def __init__(self, response: web.StreamResponse):
        self._response = response
        self.closed = False
        self.lines_written = 0

    async def __call__(self, event: WorkflowEvent) -> None:
        if self.closed:
            return
        try:
            await self._response.write(encode_event(event))
            self.lines_written += 1
        except ConnectionResetError:
            logger.debug("Client disconnected, dropping remaining events")
            self.closed = True

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._response.write_eof()
        except ConnectionResetError:
            pass


class WorkflowServer:
    """
    Embedded HTTP server exposing the workflow engine.

    Lifecycle:
        server = WorkflowServer(create_default_runner(), ServerConfig(port=4000))
        await server.start()
        # ... server running ...
        await server.stop()
    """

    def __init__(
        self,
        block_runner: BlockRunner,
        config: ServerConfig | None = None,
        engine_config: EngineConfig | None = None,
        catalog: BlockCatalog | None = None,
    ):
        self._block_runner = block_runner
        self._config = config or ServerConfig()
        self._catalog = catalog or BlockCatalog.default()
        self._executor = WorkflowExecutor(
            block_runner=block_runner,
            catalog=self._catalog,
            config=engine_config,
        )
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes registered."""
        app = web.Application()
        app.router.add_post("/api/run-workflow", self._handle_run_workflow)
        app.router.add_post("/api/run-block", self._handle_run_block)
        app.router.add_get("/api/blocks", self._handle_list_blocks)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(
            self._runner,
            self._config.host,
            self._config.port,
        )
        await self._site.start()
        logger.info(f"Workflow server started on {self._config.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Workflow server stopped")

    async def _read_json(self, request: web.Request) -> dict | web.Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, ValueError):
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "Request body must be a JSON object"}, status=400)
        return body

    async def _handle_run_workflow(self, request: web.Request) -> web.StreamResponse:
        """Validate the request, then stream the run as NDJSON."""
        body = await self._read_json(request)
        if isinstance(body, web.Response):
            return body

        nodes = body.get("nodes")
        edges = body.get("edges")
        trigger_id = body.get("triggerNodeId")
        if nodes is None or edges is None or not trigger_id:
            return web.json_response({"error": MISSING_FIELDS_ERROR}, status=400)

        try:
            graph = WorkflowGraph.model_validate({"nodes": nodes, "edges": edges})
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()))
            return web.json_response(
                {"error": f"Invalid workflow at {location}: {first.get('msg', 'invalid')}"},
                status=400,
            )

        if graph.get_node(str(trigger_id)) is None:
            return web.json_response({"error": TRIGGER_NOT_FOUND_ERROR}, status=400)

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": NDJSON_CONTENT_TYPE,
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        await response.prepare(request)

        writer = NDJSONStreamWriter(response)
        bus = EventBus(trigger_id=str(trigger_id))
        bus.subscribe(writer)

        logger.info(
            f"Run {bus.run_id} requested: {len(graph.nodes)} nodes, {len(graph.edges)} edges"
        )
        result = await self._executor.run(graph, str(trigger_id), bus=bus)
        if writer.closed:
            logger.info(f"Run {bus.run_id} finished as {result.status} after client disconnect")

        await writer.close()
        return response

    async def _handle_run_block(self, request: web.Request) -> web.Response:
        """Run one block directly."""
        body = await self._read_json(request)
        if isinstance(body, web.Response):
            return body

        block_id = body.get("blockId")
        inputs = body.get("inputs") or {}
        if not block_id or not isinstance(inputs, dict):
            return web.json_response({"error": "blockId and inputs required"}, status=400)

        has_block = getattr(self._block_runner, "has_block", None)
        if block_id not in self._catalog and not (has_block and has_block(block_id)):
            return web.json_response({"error": f"Unknown block: {block_id}"}, status=400)

        try:
            outputs = await self._block_runner.run_block(block_id, inputs)
        except BlockExecutionError as e:
            logger.warning(f"Block '{block_id}' failed: {e.message}")
            return web.json_response({"error": e.message}, status=500)
        except Exception as e:
            logger.exception(f"Block '{block_id}' crashed")
            return web.json_response({"error": str(e) or type(e).__name__}, status=500)

        return web.json_response({"outputs": outputs}, dumps=lambda o: json.dumps(o, default=str))

    async def _handle_list_blocks(self, request: web.Request) -> web.Response:
        blocks = [spec.model_dump(mode="json") for spec in self._catalog.list_blocks()]
        return web.json_response({"blocks": blocks})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Return the actual listening port (useful when configured with port=0)."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None
