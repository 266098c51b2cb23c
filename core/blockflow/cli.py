"""
Command-line interface for blockflow.

Usage:
    blockflow serve --port 4000
    blockflow run workflow.json --trigger trigger-1
    blockflow run workflow.json --trigger trigger-1 --remote http://127.0.0.1:4000
    blockflow plan workflow.json --trigger trigger-1

A workflow file holds ``{"nodes": [...], "edges": [...]}`` and may name its
trigger with ``triggerNodeId``; ``--trigger`` overrides it.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any


def _load_workflow(path: str) -> tuple[Any, str | None]:
    """Read a workflow file. Returns the graph and the trigger it names, if any."""
    from blockflow.graph.workflow import WorkflowGraph

    data = json.loads(Path(path).read_text(encoding="utf-8-sig"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object with nodes and edges")
    graph = WorkflowGraph.model_validate(
        {"nodes": data.get("nodes", []), "edges": data.get("edges", [])}
    )
    return graph, data.get("triggerNodeId")


def _resolve_trigger(args: argparse.Namespace, declared: str | None) -> str | None:
    trigger_id = args.trigger or declared
    if not trigger_id:
        print("Error: no trigger given (use --trigger or triggerNodeId)", file=sys.stderr)
    return trigger_id


def _print_event(event) -> None:
    print(json.dumps(event.to_wire(), default=str), flush=True)


def _build_runner():
    from blockflow.blocks.runner import create_default_runner
    from blockflow.config import HttpConfig, LLMConfig
    from blockflow.llm.litellm import LiteLLMProvider

    llm_config = LLMConfig()
    llm = LiteLLMProvider(
        model=llm_config.model,
        api_key=llm_config.api_key,
        api_base=llm_config.api_base,
        max_tokens=llm_config.max_tokens,
    )
    return create_default_runner(llm=llm, http_config=HttpConfig())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP server until interrupted."""
    from blockflow.config import EngineConfig, ServerConfig
    from blockflow.runtime.workflow_server import WorkflowServer

    config = ServerConfig()
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port

    async def _serve() -> None:
        server = WorkflowServer(_build_runner(), config=config, engine_config=EngineConfig())
        await server.start()
        print(f"blockflow listening on http://{config.host}:{server.port}", flush=True)
        try:
            await asyncio.Event().wait()
        finally:
            await server.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run a workflow locally or on a server, printing events as NDJSON."""
    from blockflow.config import EngineConfig
    from blockflow.runtime.event_bus import EventBus

    try:
        graph, declared = _load_workflow(args.workflow)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    trigger_id = _resolve_trigger(args, declared)
    if not trigger_id:
        return 1

    bus = EventBus(trigger_id=trigger_id)
    bus.subscribe(_print_event)

    if args.remote:
        from blockflow.runtime.stream_client import RemoteWorkflowRunner, WorkflowRequestError

        try:
            execution = asyncio.run(RemoteWorkflowRunner(args.remote).run(graph, trigger_id, bus))
        except WorkflowRequestError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0 if execution.status == "completed" else 1

    from blockflow.graph.executor import WorkflowExecutor

    config = EngineConfig()
    if args.max_iterations:
        config.default_max_iterations = args.max_iterations
    executor = WorkflowExecutor(block_runner=_build_runner(), config=config)
    result = asyncio.run(executor.run(graph, trigger_id, bus=bus))
    return 0 if result.success else 1


def cmd_plan(args: argparse.Namespace) -> int:
    """Print the execution plan for a workflow."""
    from blockflow.config import EngineConfig
    from blockflow.graph.errors import GraphValidationError
    from blockflow.graph.executor import WorkflowExecutor
    from blockflow.graph.plan import describe_plan

    try:
        graph, declared = _load_workflow(args.workflow)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    trigger_id = _resolve_trigger(args, declared)
    if not trigger_id:
        return 1

    # Planning never runs a block
    executor = WorkflowExecutor(block_runner=_NoBlocks(), config=EngineConfig())
    try:
        plan = executor.plan(graph, trigger_id)
    except GraphValidationError as e:
        for error in e.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    print(json.dumps({"trigger": trigger_id, "steps": describe_plan(plan)}, indent=2))
    return 0


class _NoBlocks:
    async def run_block(self, block_id: str, inputs: dict) -> dict:
        raise RuntimeError("plan does not execute blocks")


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    serve = subparsers.add_parser("serve", help="Start the workflow HTTP server")
    serve.add_argument("--host", default=None, help="Bind address (default from config)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from config)")
    serve.set_defaults(func=cmd_serve)

    run = subparsers.add_parser("run", help="Run a workflow and print its events")
    run.add_argument("workflow", help="Path to a workflow JSON file")
    run.add_argument("--trigger", "-t", default=None, help="Trigger node ID")
    run.add_argument("--remote", default=None, help="Server URL to run against")
    run.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Default cycle iteration cap for local runs",
    )
    run.set_defaults(func=cmd_run)

    plan = subparsers.add_parser("plan", help="Print the execution plan")
    plan.add_argument("workflow", help="Path to a workflow JSON file")
    plan.add_argument("--trigger", "-t", default=None, help="Trigger node ID")
    plan.set_defaults(func=cmd_plan)


def main():
    from blockflow.observability import configure_logging

    parser = argparse.ArgumentParser(
        prog="blockflow",
        description="blockflow - Run workflows of typed blocks",
    )
    parser.add_argument("--log-level", default="INFO", help="Log level (DEBUG, INFO, ...)")
    parser.add_argument(
        "--log-format",
        choices=["auto", "json", "human"],
        default="auto",
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
