"""Built-in text and AI blocks."""

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from blockflow.graph.errors import BlockExecutionError

if TYPE_CHECKING:
    from blockflow.blocks.runner import BlockInputs, LocalBlockRunner
    from blockflow.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")


def _str(inputs: "BlockInputs", key: str, default: str = "") -> str:
    value = inputs.get(key, default)
    if isinstance(value, list):
        return ", ".join(value)
    return str(value)


# ---------------------------------------------------------------------------
# Pure text blocks
# ---------------------------------------------------------------------------


async def constant(inputs: "BlockInputs") -> dict[str, Any]:
    return {"value": _str(inputs, "value")}


async def text_join(inputs: "BlockInputs") -> dict[str, Any]:
    text1 = _str(inputs, "text1").strip()
    text2 = _str(inputs, "text2").strip()
    separator = _str(inputs, "separator", " ").strip() or " "
    return {"combined": separator.join(t for t in (text1, text2) if t)}


async def conditional(inputs: "BlockInputs") -> dict[str, Any]:
    text = _str(inputs, "text").strip()
    pattern = _str(inputs, "pattern").strip()
    return {"match": pattern in text if pattern else bool(text)}


async def extract_emails(inputs: "BlockInputs") -> dict[str, Any]:
    found: list[str] = []
    for email in EMAIL_PATTERN.findall(_str(inputs, "text")):
        if email not in found:
            found.append(email)
    return {"emails": ", ".join(found)}


# ---------------------------------------------------------------------------
# LLM blocks
# ---------------------------------------------------------------------------


class _LLMBlocks:
    """AI blocks backed by an LLMProvider."""

    def __init__(self, llm: "LLMProvider | None"):
        self._llm = llm

    def _require_llm(self, block_id: str) -> "LLMProvider":
        if self._llm is None:
            raise BlockExecutionError(
                f"Block '{block_id}' needs an LLM provider; configure one in "
                "~/.blockflow/configuration.json",
                block_id=block_id,
            )
        return self._llm

    async def summarize(self, inputs: "BlockInputs") -> dict[str, Any]:
        text = _str(inputs, "text")
        if not text.strip():
            return {"summary": ""}
        summary = await self._require_llm("summarize-text").prompt(
            text,
            system=(
                "Summarize the user's text in a few concise sentences. "
                "Reply with the summary only."
            ),
        )
        return {"summary": summary.strip()}

    async def rewrite(self, inputs: "BlockInputs") -> dict[str, Any]:
        text = _str(inputs, "text")
        if not text.strip():
            return {"rewritten": ""}
        rewritten = await self._require_llm("rewrite-prompt").prompt(
            text,
            system=(
                "Rewrite the user's prompt so it is clear, specific and unambiguous. "
                "Reply with the rewritten prompt only."
            ),
        )
        return {"rewritten": rewritten.strip()}

    async def translate(self, inputs: "BlockInputs") -> dict[str, Any]:
        text = _str(inputs, "text")
        target = _str(inputs, "targetLanguage").strip() or "English"
        if not text.strip():
            return {"translated": ""}
        translated = await self._require_llm("translate-text").prompt(
            text,
            system=f"Translate the user's text into {target}. Reply with the translation only.",
        )
        return {"translated": translated.strip()}

    async def classify(self, inputs: "BlockInputs") -> dict[str, Any]:
        text = _str(inputs, "text")
        if not text.strip():
            return {"label": "empty", "confidence": 0}
        raw = await self._require_llm("classify-input").prompt(
            text,
            system=(
                "Classify the user's text. Reply with JSON only: "
                '{"label": "<short category>", "confidence": <0-100>}'
            ),
            json_mode=True,
        )
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BlockExecutionError(
                f"classify-input returned invalid JSON: {raw[:200]}", block_id="classify-input"
            ) from e
        return {
            "label": str(parsed.get("label", "unknown")),
            "confidence": parsed.get("confidence", 0),
        }


def register_builtin_blocks(runner: "LocalBlockRunner", llm: "LLMProvider | None" = None) -> None:
    runner.register("constant", constant)
    runner.register("text-join", text_join)
    runner.register("conditional", conditional)
    runner.register("extract-emails", extract_emails)

    ai = _LLMBlocks(llm)
    runner.register("summarize-text", ai.summarize)
    runner.register("rewrite-prompt", ai.rewrite)
    runner.register("translate-text", ai.translate)
    runner.register("classify-input", ai.classify)
