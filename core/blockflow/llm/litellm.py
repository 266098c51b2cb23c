"""LiteLLM-backed provider.

LiteLLM gives one interface over Anthropic, OpenAI and the other hosted
models, so the model string alone picks the backend
(e.g. ``anthropic/claude-haiku-4-5-20251001``, ``openai/gpt-4o-mini``).
"""

import logging
from typing import Any

import litellm

from blockflow.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class LiteLLMProvider(LLMProvider):
    """
    Provider that routes completions through ``litellm.acompletion``.

    Example:
        llm = LiteLLMProvider(model="anthropic/claude-haiku-4-5-20251001")
        summary = await llm.prompt("Summarize: ...")
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        full_messages = list(messages)
        if system:
            full_messages.insert(0, {"role": "system", "content": system})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": full_messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await litellm.acompletion(**kwargs)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        content = choice.message.content or ""
        logger.debug(f"LLM {self.model} returned {len(content)} chars")
        return LLMResponse(
            content=content,
            model=getattr(response, "model", self.model) or self.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )
