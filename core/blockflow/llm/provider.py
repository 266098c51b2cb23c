"""LLM Provider abstraction for pluggable LLM backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any LLM backend.

    The AI blocks only need single-turn completions, so the interface is
    small.
    """

    @abstractmethod
    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation history [{role: "user"|"assistant", content: str}]
            system: System prompt
            max_tokens: Maximum tokens to generate (None = provider default)
            json_mode: If True, request structured JSON output from the LLM

        Returns:
            LLMResponse with content and metadata
        """
        pass

    async def prompt(self, text: str, system: str = "", **kwargs: Any) -> str:
        """Convenience wrapper: one user message in, text out."""
        response = await self.acomplete(
            messages=[{"role": "user", "content": text}],
            system=system,
            **kwargs,
        )
        return response.content
