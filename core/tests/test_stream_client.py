"""
Tests for RemoteWorkflowRunner.

The client replays the server's NDJSON stream through a local EventBus, so
observers must end up with the same state as for an in-process run.
"""

import pytest
from aiohttp import web

from blockflow.config import ServerConfig
from blockflow.graph.executor import WorkflowExecutor
from blockflow.graph.workflow import Edge, Node, WorkflowGraph
from blockflow.runtime.event_bus import EventBus
from blockflow.runtime.events import EventType
from blockflow.runtime.stream_client import RemoteWorkflowRunner, WorkflowRequestError
from blockflow.runtime.workflow_server import WorkflowServer


class CountingRunner:
    def __init__(self):
        self.count = 0

    async def run_block(self, block_id, inputs):
        self.count += 1
        return {"count": self.count}


def _looping_graph():
    return WorkflowGraph(
        nodes=[
            Node(id="t", category="trigger", config={"text": "go"}),
            Node(id="a", category="ai", block_ref="counter", config={"maxIterations": 3}),
            Node(id="b", category="ai"),
            Node(id="done", category="action", block_type="log_output"),
        ],
        edges=[
            Edge(id="e1", source="t", target="a"),
            Edge(id="e2", source="a", target="b"),
            Edge(id="e3", source="b", target="a"),
            Edge(id="e4", source="b", target="done"),
        ],
    )


async def _start(app: web.Application) -> tuple[web.AppRunner, str]:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]
    return runner, f"http://127.0.0.1:{port}"


class TestRemoteRun:
    @pytest.mark.asyncio
    async def test_remote_matches_local(self):
        server = WorkflowServer(CountingRunner(), config=ServerConfig(host="127.0.0.1", port=0))
        await server.start()
        try:
            remote_bus = EventBus(trigger_id="t")
            remote_events = []
            remote_bus.subscribe(remote_events.append)
            remote = await RemoteWorkflowRunner(f"http://127.0.0.1:{server.port}").run(
                _looping_graph(), "t", bus=remote_bus
            )
        finally:
            await server.stop()

        local_bus = EventBus(trigger_id="t")
        local_events = []
        local_bus.subscribe(local_events.append)
        await WorkflowExecutor(block_runner=CountingRunner()).run(
            _looping_graph(), "t", bus=local_bus
        )

        assert [e.to_wire() for e in remote_events] == [e.to_wire() for e in local_events]
        assert remote.status == local_bus.execution.status == "completed"
        assert remote.last_output == local_bus.execution.last_output
        assert remote.active_node_ids == []
        assert remote.loop_info is None

    @pytest.mark.asyncio
    async def test_observer_sees_loop_iterations(self):
        server = WorkflowServer(CountingRunner(), config=ServerConfig(host="127.0.0.1", port=0))
        await server.start()
        try:
            bus = EventBus(trigger_id="t")
            iterations = []

            def observe(execution):
                info = execution.loop_info
                if info and info.iteration not in iterations:
                    iterations.append(info.iteration)

            bus.on_update(observe)
            await RemoteWorkflowRunner(f"http://127.0.0.1:{server.port}").run(
                _looping_graph(), "t", bus=bus
            )
        finally:
            await server.stop()

        assert iterations == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_rejected_request_raises(self):
        server = WorkflowServer(CountingRunner(), config=ServerConfig(host="127.0.0.1", port=0))
        await server.start()
        try:
            with pytest.raises(WorkflowRequestError) as exc_info:
                await RemoteWorkflowRunner(f"http://127.0.0.1:{server.port}").run(
                    _looping_graph(), "missing"
                )
        finally:
            await server.stop()

        assert exc_info.value.status == 400
        assert exc_info.value.error == "Trigger node not found"


class TestStreamEdgeCases:
    @pytest.mark.asyncio
    async def test_stream_without_complete_is_completed_locally(self):
        async def handler(request):
            response = web.StreamResponse(headers={"Content-Type": "application/x-ndjson"})
            await response.prepare(request)
            await response.write(b'{"type":"start","blockId":"t"}\n{"type":"progr')
            await response.write(b'ess","blockId":"t","outputs":{"text":"x"}}\ngarbage\n')
            await response.write_eof()
            return response

        app = web.Application()
        app.router.add_post("/api/run-workflow", handler)
        runner, base_url = await _start(app)
        try:
            bus = EventBus(trigger_id="t")
            events = []
            bus.subscribe(events.append)
            execution = await RemoteWorkflowRunner(base_url).run(_looping_graph(), "t", bus=bus)
        finally:
            await runner.cleanup()

        assert [e.type for e in events] == [EventType.START, EventType.PROGRESS, EventType.COMPLETE]
        assert execution.status == "completed"
        assert execution.last_output.outputs == {"text": "x"}

    @pytest.mark.asyncio
    async def test_trailing_line_without_newline(self):
        async def handler(request):
            response = web.StreamResponse(headers={"Content-Type": "application/x-ndjson"})
            await response.prepare(request)
            await response.write(b'{"type":"error","blockId":"__workflow__","error":"bad"}\n')
            await response.write(b'{"type":"complete","status":"failed"}')
            await response.write_eof()
            return response

        app = web.Application()
        app.router.add_post("/api/run-workflow", handler)
        runner, base_url = await _start(app)
        try:
            execution = await RemoteWorkflowRunner(base_url).run(_looping_graph(), "t")
        finally:
            await runner.cleanup()

        assert execution.status == "failed"
        assert execution.error == "bad"

    def test_request_body_shape(self):
        body = RemoteWorkflowRunner.request_body(_looping_graph(), "t")
        assert body["triggerNodeId"] == "t"
        assert [n["id"] for n in body["nodes"]] == ["t", "a", "b", "done"]
        assert body["nodes"][1]["blockRef"] == "counter"
        assert body["nodes"][3]["blockType"] == "log_output"
        assert "block_ref" not in body["nodes"][1]
        assert WorkflowGraph.model_validate({"nodes": body["nodes"], "edges": body["edges"]})

    def test_request_body_uses_camel_case_handles(self):
        graph = WorkflowGraph(
            nodes=[
                Node(id="t", category="trigger"),
                Node(id="s", category="ai", block_ref="summarize-text", block_type="summarize"),
            ],
            edges=[Edge(id="e1", source="t", target="s", source_handle="out", target_handle="in")],
        )
        body = RemoteWorkflowRunner.request_body(graph, "t")

        node = body["nodes"][1]
        assert node["blockRef"] == "summarize-text"
        assert node["blockType"] == "summarize"
        edge = body["edges"][0]
        assert edge["sourceHandle"] == "out"
        assert edge["targetHandle"] == "in"
        assert "source_handle" not in edge

        parsed = WorkflowGraph.model_validate({"nodes": body["nodes"], "edges": body["edges"]})
        assert parsed.nodes[1].block_ref == "summarize-text"
        assert parsed.edges[0].target_handle == "in"
