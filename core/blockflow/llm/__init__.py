"""LLM providers used by the AI blocks."""

from blockflow.llm.litellm import LiteLLMProvider
from blockflow.llm.provider import LLMProvider, LLMResponse

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider"]
