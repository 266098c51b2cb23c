"""
Block Runner - Executes a block by id with a normalized input mapping.

The engine only depends on the ``BlockRunner`` protocol:

    outputs = await runner.run_block("summarize-text", {"text": "..."})

``LocalBlockRunner`` is an in-process registry of async handlers, used by
the server and the CLI. Anything else (a remote block service, a test fake)
can be dropped in as long as it implements ``run_block``.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from blockflow.graph.errors import BlockExecutionError

logger = logging.getLogger(__name__)

BlockInputs = dict[str, str | list[str]]
BlockHandler = Callable[[BlockInputs], Awaitable[dict[str, Any]]]


@runtime_checkable
class BlockRunner(Protocol):
    """Executes external blocks. Failures raise with a readable message."""

    async def run_block(self, block_id: str, inputs: BlockInputs) -> dict[str, Any]: ...


class LocalBlockRunner:
    """
    Registry of async block handlers.

    Example:
        runner = LocalBlockRunner()

        async def shout(inputs):
            return {"text": str(inputs.get("text", "")).upper()}

        runner.register("shout", shout)
        await runner.run_block("shout", {"text": "hi"})  # {"text": "HI"}
    """

    def __init__(self) -> None:
        self._handlers: dict[str, BlockHandler] = {}

    def register(self, block_id: str, handler: BlockHandler) -> None:
        """Register (or replace) the handler for a block."""
        self._handlers[block_id] = handler

    def has_block(self, block_id: str) -> bool:
        return block_id in self._handlers

    @property
    def block_ids(self) -> list[str]:
        return list(self._handlers)

    async def run_block(self, block_id: str, inputs: BlockInputs) -> dict[str, Any]:
        handler = self._handlers.get(block_id)
        if handler is None:
            raise BlockExecutionError(f"Unknown block: {block_id}", block_id=block_id)

        logger.debug(f"Running block '{block_id}' with inputs {sorted(inputs)}")
        try:
            return await handler(inputs)
        except BlockExecutionError:
            raise
        except Exception as e:
            raise BlockExecutionError(str(e) or type(e).__name__, block_id=block_id) from e


def create_default_runner(
    llm: Any | None = None,
    http_config: Any | None = None,
) -> LocalBlockRunner:
    """
    Build a runner with the built-in blocks.

    Args:
        llm: LLMProvider for the AI blocks. Without one, AI blocks fail with
            a clear error instead of being unregistered.
        http_config: HttpConfig for the integration blocks
    """
    from blockflow.blocks.builtin import register_builtin_blocks
    from blockflow.blocks.integrations import register_integration_blocks

    runner = LocalBlockRunner()
    register_builtin_blocks(runner, llm=llm)
    register_integration_blocks(runner, http_config=http_config)
    return runner
