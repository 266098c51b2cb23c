"""
Node Executor - Turns one node plus its merged upstream payload into an output payload.

Dispatch is closed over the node category:
- trigger: never dispatched, see ``trigger_payload``
- block nodes (``block_ref`` set): inputs are normalized and handed to the
  block runner; the result gets a ``text`` field for downstream convenience
- condition: a predicate per ``block_type``; failure raises
  ConditionFailedError, success passes the upstream payload through
- action: a best-effort side effect per ``block_type``; always passes the
  upstream payload through, failures are logged and swallowed
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx

from blockflow.blocks.catalog import BlockCatalog, BlockInputType
from blockflow.config import HttpConfig
from blockflow.graph.errors import BlockExecutionError, ConditionFailedError
from blockflow.graph.validator import validate_block_output
from blockflow.graph.workflow import Node, NodeCategory, Payload

if TYPE_CHECKING:
    from blockflow.blocks.runner import BlockInputs, BlockRunner

logger = logging.getLogger(__name__)

# Inputs that fall back to the upstream's primary text
PRIMARY_INPUT_KEYS = frozenset({"text", "text1", "value", "message", "url"})

# Node config keys that steer the engine and are never forwarded to blocks
ENGINE_CONFIG_KEYS = frozenset({"maxIterations"})


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def to_text(value: Any) -> str:
    """Render a payload value as text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list | tuple):
        return ",".join(to_text(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _first_present(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def trigger_payload(node: Node) -> Payload:
    """The payload a trigger seeds into the cache: ``{trigger, text, value}``."""
    text = node.config.get("text")
    value = node.config.get("value")
    return {
        "trigger": True,
        "text": text if text is not None else "",
        "value": value if value is not None else "",
    }


def primary_text(upstream: Payload) -> str:
    """``text``, else ``value``, else the first value that is not a marker."""
    value = _first_present(upstream, "text", "value")
    if value is None:
        value = next((v for v in upstream.values() if v is not True and v is not None), "")
    return to_text(value)


def normalize_outputs(outputs: dict[str, Any]) -> Payload:
    """Add a ``text`` field: text > body > content > first value."""
    text_value = _first_present(outputs, "text", "body", "content")
    if text_value is None:
        text_value = next(iter(outputs.values()), "")
    return {**outputs, "text": to_text(text_value)}


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

ConditionHandler = Callable[[str, Payload, dict[str, Any]], None]


def check_text_contains(text: str, upstream: Payload, config: dict[str, Any]) -> None:
    pattern = to_text(config.get("pattern"))
    if _as_bool(config.get("caseSensitive", False)):
        matched = pattern in text
    else:
        matched = pattern.lower() in text.lower()
    if not matched:
        raise ConditionFailedError("Condition failed: text does not contain pattern")


def check_text_not_empty(text: str, upstream: Payload, config: dict[str, Any]) -> None:
    if not text.strip():
        raise ConditionFailedError("Condition failed: text is empty")


def check_confidence(text: str, upstream: Payload, config: dict[str, Any]) -> None:
    raw = upstream.get("confidence", 100)
    try:
        confidence = float(raw)
    except (TypeError, ValueError) as e:
        raise ConditionFailedError(f"Condition failed: confidence {raw!r} is not a number") from e
    # 0-1 scale is read as a fraction
    if 0 < confidence <= 1:
        confidence *= 100

    try:
        threshold = float(config.get("threshold", 70))
    except (TypeError, ValueError):
        threshold = 70.0

    if confidence < threshold:
        raise ConditionFailedError(
            f"Condition failed: confidence {confidence:.0f}% < {threshold:g}%"
        )


CONDITION_HANDLERS: dict[str, ConditionHandler] = {
    "text_contains": check_text_contains,
    "text_not_empty": check_text_not_empty,
    "confidence_check": check_confidence,
}


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ResultStore:
    """In-memory sink for ``save_result`` actions, keyed by node id."""

    def __init__(self) -> None:
        self._results: dict[str, list[Payload]] = {}

    def save(self, node_id: str, payload: Payload) -> None:
        self._results.setdefault(node_id, []).append(dict(payload))

    def get(self, node_id: str) -> list[Payload]:
        return list(self._results.get(node_id, []))

    def all(self) -> dict[str, list[Payload]]:
        return {k: list(v) for k, v in self._results.items()}


ActionHandler = Callable[["NodeExecutor", Node, Payload], Awaitable[None]]


async def log_output(executor: "NodeExecutor", node: Node, upstream: Payload) -> None:
    logger.info(
        f"[Workflow Log] {json.dumps(upstream, default=str)}", extra={"event": "log_output"}
    )


async def call_webhook(executor: "NodeExecutor", node: Node, upstream: Payload) -> None:
    url = to_text(node.config.get("url")).strip()
    if not url:
        logger.debug(f"Webhook action '{node.id}' has no url, skipping")
        return
    method = to_text(node.config.get("method") or "POST").upper()
    async with httpx.AsyncClient(
        timeout=executor.http_config.timeout_seconds,
        transport=executor.http_transport,
    ) as client:
        response = await client.request(method, url, json=upstream)
    if response.is_error:
        logger.warning(f"Webhook {method} {url} returned HTTP {response.status_code}")


async def save_result(executor: "NodeExecutor", node: Node, upstream: Payload) -> None:
    executor.result_store.save(node.id, upstream)
    logger.info(f"[Save Result] stored payload for '{node.id}'", extra={"event": "save_result"})


async def send_email(executor: "NodeExecutor", node: Node, upstream: Payload) -> None:
    # No mail transport is wired in; the message is logged
    logger.info(
        f"[Send Email] to={node.config.get('to')!r} subject={node.config.get('subject')!r}",
        extra={"event": "send_email"},
    )


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "log_output": log_output,
    "webhook": call_webhook,
    "save_result": save_result,
    "send_email": send_email,
}


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class NodeExecutor:
    """
    Executes a single node.

    Example:
        executor = NodeExecutor(block_runner=create_default_runner())
        output = await executor.execute(node, {"text": "hello"})
    """

    def __init__(
        self,
        block_runner: "BlockRunner",
        catalog: BlockCatalog | None = None,
        result_store: ResultStore | None = None,
        http_config: HttpConfig | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.block_runner = block_runner
        self.catalog = catalog or BlockCatalog.default()
        self.result_store = result_store or ResultStore()
        self.http_config = http_config or HttpConfig()
        self.http_transport = http_transport

    async def execute(self, node: Node, upstream: Payload) -> Payload:
        """
        Execute ``node`` against its merged upstream payload.

        Raises:
            ConditionFailedError: a condition rejected the payload
            BlockExecutionError: the block runner failed
        """
        if node.block_ref:
            return await self._execute_block(node, upstream)
        if node.category == NodeCategory.CONDITION:
            return self._check_condition(node, upstream)
        if node.category == NodeCategory.ACTION:
            await self._run_action(node, upstream)
            return upstream
        # Triggers are seeded before execution; bare ai nodes pass through
        return upstream

    def build_block_inputs(
        self,
        block_id: str,
        config: dict[str, Any],
        upstream: Payload,
    ) -> "BlockInputs":
        """
        Build the input mapping for a block call.

        For every declared input, in priority order: node config, exact
        upstream key, upstream primary text (for primary keys), empty string.
        Undeclared config scalars are forwarded as-is.
        """
        spec = self.catalog.get(block_id)
        inputs: BlockInputs = {}

        if spec is None:
            candidates = (config.get("text"), upstream.get("text"), upstream.get("value"))
            text = to_text(next((c for c in candidates if c not in (None, "")), ""))
            inputs = {"text": text, "value": text}
        else:
            primary = primary_text(upstream)
            for declared in spec.inputs:
                key = declared.key
                for source in (config, upstream):
                    value = source.get(key)
                    if value is None or value == "":
                        continue
                    if declared.type == BlockInputType.FILE and isinstance(value, list):
                        inputs[key] = [to_text(v) for v in value]
                    else:
                        inputs[key] = to_text(value)
                    break
                else:
                    inputs[key] = primary if key in PRIMARY_INPUT_KEYS else ""

        for key, value in config.items():
            if key in inputs or key in ENGINE_CONFIG_KEYS or value is None:
                continue
            if isinstance(value, str | int | float | bool):
                inputs[key] = to_text(value)
        return inputs

    async def _execute_block(self, node: Node, upstream: Payload) -> Payload:
        block_id = node.block_ref or ""
        inputs = self.build_block_inputs(block_id, node.config, upstream)
        try:
            outputs = await self.block_runner.run_block(block_id, inputs)
            outputs = validate_block_output(block_id, outputs)
        except BlockExecutionError as e:
            e.node_id = node.id
            raise
        except Exception as e:
            raise BlockExecutionError(
                str(e) or f"Block {block_id} failed", block_id=block_id, node_id=node.id
            ) from e
        return normalize_outputs(outputs)

    def _check_condition(self, node: Node, upstream: Payload) -> Payload:
        handler = CONDITION_HANDLERS.get(node.block_type)
        if handler is None:
            logger.debug(f"Unknown condition '{node.block_type}' on '{node.id}', passing through")
            return upstream
        text = to_text(_first_present(upstream, "text", "value"))
        try:
            handler(text, upstream, node.config)
        except ConditionFailedError as e:
            e.node_id = node.id
            raise
        return upstream

    async def _run_action(self, node: Node, upstream: Payload) -> None:
        handler = ACTION_HANDLERS.get(node.block_type)
        if handler is None:
            logger.debug(f"Unknown action '{node.block_type}' on '{node.id}', passing through")
            return
        try:
            await handler(self, node, upstream)
        except Exception as e:
            # Actions are best-effort
            logger.warning(f"Action '{node.block_type}' on '{node.id}' failed: {e}")
