"""
Integration blocks - Outbound HTTP via httpx.

Supports:
- fetch-url: GET a page, return body and status code
- send-slack: post a message to a Slack incoming webhook
- send-discord: post a message to a Discord webhook
"""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from blockflow.config import HttpConfig
from blockflow.graph.errors import BlockExecutionError

if TYPE_CHECKING:
    from blockflow.blocks.runner import BlockInputs, LocalBlockRunner

logger = logging.getLogger(__name__)


def _str(inputs: "BlockInputs", *keys: str) -> str:
    for key in keys:
        value = inputs.get(key)
        if value:
            return ", ".join(value) if isinstance(value, list) else str(value)
    return ""


class IntegrationBlocks:
    """HTTP-backed blocks sharing one configuration."""

    def __init__(
        self,
        config: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config or HttpConfig()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            headers={"User-Agent": self._config.user_agent},
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch_url(self, inputs: "BlockInputs") -> dict[str, Any]:
        url = _str(inputs, "url", "text").strip()
        if not url:
            raise BlockExecutionError("URL is required for fetch-url", block_id="fetch-url")
        if not url.startswith(("http://", "https://")):
            url = f"https://{url}"

        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise BlockExecutionError(
                "Request timeout: URL took too long to respond", block_id="fetch-url"
            ) from e
        except httpx.HTTPError as e:
            raise BlockExecutionError(f"Failed to fetch URL: {e}", block_id="fetch-url") from e

        body = response.text
        limit = self._config.max_body_chars
        if len(body) > limit:
            logger.warning(f"fetch-url body truncated from {len(body)} to {limit} chars")
            body = body[:limit] + "\n\n[... content truncated ...]"
        return {"body": body, "statusCode": response.status_code, "url": url}

    async def _post_webhook(self, block_id: str, webhook_url: str, payload: dict) -> str:
        try:
            async with self._client() as client:
                response = await client.post(webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"{block_id} webhook failed: {e}")
            return f"error: {e}"
        return "sent" if response.is_success else f"error: {response.status_code}"

    async def send_slack(self, inputs: "BlockInputs") -> dict[str, Any]:
        webhook_url = _str(inputs, "webhookUrl")
        message = _str(inputs, "message", "text")
        if not webhook_url or not message:
            return {"status": "error: missing webhook URL or message"}
        return {"status": await self._post_webhook("send-slack", webhook_url, {"text": message})}

    async def send_discord(self, inputs: "BlockInputs") -> dict[str, Any]:
        webhook_url = _str(inputs, "webhookUrl")
        message = _str(inputs, "message", "text")
        if not webhook_url or not message:
            return {"status": "error: missing webhook URL or message"}
        return {
            "status": await self._post_webhook("send-discord", webhook_url, {"content": message})
        }


def register_integration_blocks(
    runner: "LocalBlockRunner",
    http_config: HttpConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    blocks = IntegrationBlocks(http_config, transport=transport)
    runner.register("fetch-url", blocks.fetch_url)
    runner.register("send-slack", blocks.send_slack)
    runner.register("send-discord", blocks.send_discord)
