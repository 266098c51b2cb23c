"""
Tests for the block catalog, LocalBlockRunner and the built-in blocks.

HTTP-backed blocks run against httpx.MockTransport.
"""

import json

import httpx
import pytest

from blockflow.blocks.catalog import BlockCatalog, BlockSpec
from blockflow.blocks.integrations import IntegrationBlocks, register_integration_blocks
from blockflow.blocks.runner import BlockRunner, LocalBlockRunner, create_default_runner
from blockflow.config import HttpConfig
from blockflow.graph.errors import BlockExecutionError
from blockflow.llm.provider import LLMProvider, LLMResponse


class CannedLLM(LLMProvider):
    """Returns a fixed reply and records prompts."""

    def __init__(self, reply: str):
        self.reply = reply
        self.calls: list[dict] = []

    async def acomplete(self, messages, system="", max_tokens=None, json_mode=False):
        self.calls.append({"messages": messages, "system": system, "json_mode": json_mode})
        return LLMResponse(content=self.reply, model="canned")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    def test_default_blocks(self):
        catalog = BlockCatalog.default()
        spec = catalog.get("text-join")
        assert [i.key for i in spec.inputs] == ["text1", "text2", "separator"]
        assert "summarize-text" in catalog
        assert catalog.get("nope") is None

    def test_register(self):
        catalog = BlockCatalog()
        catalog.register(BlockSpec(id="custom", name="Custom"))
        assert [b.id for b in catalog.list_blocks()] == ["custom"]

    def test_every_default_block_has_a_handler(self):
        runner = create_default_runner()
        for spec in BlockCatalog.default().list_blocks():
            assert runner.has_block(spec.id), spec.id


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class TestLocalBlockRunner:
    @pytest.mark.asyncio
    async def test_register_and_run(self):
        runner = LocalBlockRunner()

        async def shout(inputs):
            return {"text": str(inputs["text"]).upper()}

        runner.register("shout", shout)
        assert await runner.run_block("shout", {"text": "hi"}) == {"text": "HI"}
        assert runner.block_ids == ["shout"]
        assert isinstance(runner, BlockRunner)

    @pytest.mark.asyncio
    async def test_unknown_block(self):
        with pytest.raises(BlockExecutionError, match="Unknown block: ghost"):
            await LocalBlockRunner().run_block("ghost", {})

    @pytest.mark.asyncio
    async def test_handler_errors_wrapped(self):
        runner = LocalBlockRunner()

        async def broken(inputs):
            raise KeyError("missing")

        runner.register("broken", broken)
        with pytest.raises(BlockExecutionError) as exc_info:
            await runner.run_block("broken", {})
        assert exc_info.value.block_id == "broken"


# ---------------------------------------------------------------------------
# Built-in text blocks
# ---------------------------------------------------------------------------


class TestBuiltinBlocks:
    @pytest.fixture
    def runner(self):
        return create_default_runner()

    @pytest.mark.asyncio
    async def test_extract_emails_dedupes(self, runner):
        outputs = await runner.run_block(
            "extract-emails", {"text": "a@x.io, b@y.com and a@x.io again"}
        )
        assert outputs == {"emails": "a@x.io, b@y.com"}

    @pytest.mark.asyncio
    async def test_text_join(self, runner):
        outputs = await runner.run_block(
            "text-join", {"text1": " left ", "text2": "right", "separator": "|"}
        )
        assert outputs == {"combined": "left|right"}

    @pytest.mark.asyncio
    async def test_text_join_default_separator(self, runner):
        outputs = await runner.run_block("text-join", {"text1": "a", "text2": "b", "separator": ""})
        assert outputs == {"combined": "a b"}

    @pytest.mark.asyncio
    async def test_constant(self, runner):
        assert await runner.run_block("constant", {"value": "42"}) == {"value": "42"}

    @pytest.mark.asyncio
    async def test_conditional(self, runner):
        assert await runner.run_block("conditional", {"text": "abc", "pattern": "b"}) == {
            "match": True
        }
        assert await runner.run_block("conditional", {"text": "", "pattern": ""}) == {
            "match": False
        }


# ---------------------------------------------------------------------------
# LLM blocks
# ---------------------------------------------------------------------------


class TestLLMBlocks:
    @pytest.mark.asyncio
    async def test_without_llm_fails_clearly(self):
        runner = create_default_runner()
        with pytest.raises(BlockExecutionError, match="needs an LLM provider"):
            await runner.run_block("summarize-text", {"text": "long"})

    @pytest.mark.asyncio
    async def test_empty_text_skips_llm(self):
        llm = CannedLLM("unused")
        runner = create_default_runner(llm=llm)
        assert await runner.run_block("summarize-text", {"text": "  "}) == {"summary": ""}
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_summarize(self):
        llm = CannedLLM("  short  ")
        runner = create_default_runner(llm=llm)
        assert await runner.run_block("summarize-text", {"text": "long text"}) == {
            "summary": "short"
        }
        assert llm.calls[0]["messages"] == [{"role": "user", "content": "long text"}]

    @pytest.mark.asyncio
    async def test_translate_uses_target_language(self):
        llm = CannedLLM("bonjour")
        runner = create_default_runner(llm=llm)
        outputs = await runner.run_block(
            "translate-text", {"text": "hello", "targetLanguage": "French"}
        )
        assert outputs == {"translated": "bonjour"}
        assert "French" in llm.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_classify_parses_json(self):
        llm = CannedLLM(json.dumps({"label": "billing", "confidence": 87}))
        runner = create_default_runner(llm=llm)
        outputs = await runner.run_block("classify-input", {"text": "refund please"})
        assert outputs == {"label": "billing", "confidence": 87}
        assert llm.calls[0]["json_mode"] is True

    @pytest.mark.asyncio
    async def test_classify_invalid_json(self):
        runner = create_default_runner(llm=CannedLLM("not json"))
        with pytest.raises(BlockExecutionError, match="invalid JSON"):
            await runner.run_block("classify-input", {"text": "x"})


# ---------------------------------------------------------------------------
# Integration blocks
# ---------------------------------------------------------------------------


def _runner_with(handler, **config):
    runner = LocalBlockRunner()
    register_integration_blocks(
        runner, http_config=HttpConfig(**config), transport=httpx.MockTransport(handler)
    )
    return runner


class TestFetchUrl:
    @pytest.mark.asyncio
    async def test_adds_scheme(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text="<html>ok</html>")

        outputs = await _runner_with(handler).run_block("fetch-url", {"url": "example.com"})
        assert seen[0].startswith("https://example.com")
        assert outputs["body"] == "<html>ok</html>"
        assert outputs["statusCode"] == 200
        assert outputs["url"] == "https://example.com"

    @pytest.mark.asyncio
    async def test_truncates_large_bodies(self):
        runner = _runner_with(
            lambda request: httpx.Response(200, text="x" * 50), max_body_chars=10
        )
        outputs = await runner.run_block("fetch-url", {"url": "https://big.example"})
        assert outputs["body"].startswith("x" * 10)
        assert outputs["body"].endswith("[... content truncated ...]")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(BlockExecutionError, match="Request timeout"):
            await _runner_with(handler).run_block("fetch-url", {"url": "https://slow.example"})

    @pytest.mark.asyncio
    async def test_missing_url(self):
        with pytest.raises(BlockExecutionError, match="URL is required"):
            await IntegrationBlocks().fetch_url({"url": ""})


class TestWebhookBlocks:
    @pytest.mark.asyncio
    async def test_slack_payload(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        outputs = await _runner_with(handler).run_block(
            "send-slack", {"webhookUrl": "https://hooks.slack.example/x", "message": "hi"}
        )
        assert outputs == {"status": "sent"}
        assert bodies == [{"text": "hi"}]

    @pytest.mark.asyncio
    async def test_discord_payload_and_error_status(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(429)

        outputs = await _runner_with(handler).run_block(
            "send-discord", {"webhookUrl": "https://discord.example/x", "message": "hi"}
        )
        assert outputs == {"status": "error: 429"}
        assert bodies == [{"content": "hi"}]

    @pytest.mark.asyncio
    async def test_missing_webhook_url(self):
        outputs = await IntegrationBlocks().send_slack({"message": "hi"})
        assert outputs["status"].startswith("error: missing")
