"""
Block Catalog - Which blocks exist and which inputs they declare.

The node executor uses declared inputs to build the input mapping for a
block call. Blocks that are not in the catalog still run; they receive a
plain ``{text, value}`` mapping.
"""

from enum import StrEnum

from pydantic import BaseModel, Field


class BlockInputType(StrEnum):
    TEXT = "text"
    FILE = "file"
    SELECT = "select"


class BlockInput(BaseModel):
    """One declared input of a block."""

    key: str
    type: BlockInputType = BlockInputType.TEXT
    label: str = ""


class BlockSpec(BaseModel):
    """Catalog entry for a block."""

    id: str
    name: str
    description: str = ""
    inputs: list[BlockInput] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}


def _text(*keys: str) -> list[BlockInput]:
    return [BlockInput(key=k) for k in keys]


DEFAULT_BLOCKS: list[BlockSpec] = [
    BlockSpec(
        id="summarize-text",
        name="Summarize Text",
        inputs=_text("text"),
        outputs=["summary"],
    ),
    BlockSpec(
        id="extract-emails",
        name="Extract Emails",
        inputs=_text("text"),
        outputs=["emails"],
    ),
    BlockSpec(
        id="rewrite-prompt",
        name="Rewrite Prompt",
        inputs=_text("text"),
        outputs=["rewritten"],
    ),
    BlockSpec(
        id="classify-input",
        name="Classify Input",
        inputs=_text("text"),
        outputs=["label", "confidence"],
    ),
    BlockSpec(
        id="text-join",
        name="Text Join",
        inputs=_text("text1", "text2", "separator"),
        outputs=["combined"],
    ),
    BlockSpec(id="constant", name="Constant", inputs=_text("value"), outputs=["value"]),
    BlockSpec(
        id="conditional",
        name="Conditional",
        inputs=_text("text", "pattern"),
        outputs=["match"],
    ),
    BlockSpec(
        id="translate-text",
        name="Translate Text",
        inputs=[BlockInput(key="text"), BlockInput(key="targetLanguage", type="select")],
        outputs=["translated"],
    ),
    BlockSpec(
        id="fetch-url",
        name="Fetch URL",
        inputs=_text("url"),
        outputs=["body", "statusCode", "url"],
    ),
    BlockSpec(
        id="send-slack",
        name="Send to Slack",
        inputs=_text("webhookUrl", "message"),
        outputs=["status"],
    ),
    BlockSpec(
        id="send-discord",
        name="Send to Discord",
        inputs=_text("webhookUrl", "message"),
        outputs=["status"],
    ),
]


class BlockCatalog:
    """
    In-memory registry of block specs.

    Example:
        catalog = BlockCatalog.default()
        spec = catalog.get("summarize-text")
        [i.key for i in spec.inputs]  # ["text"]
    """

    def __init__(self, blocks: list[BlockSpec] | None = None):
        self._blocks: dict[str, BlockSpec] = {}
        for block in blocks or []:
            self.register(block)

    @classmethod
    def default(cls) -> "BlockCatalog":
        return cls(DEFAULT_BLOCKS)

    def register(self, block: BlockSpec) -> None:
        self._blocks[block.id] = block

    def get(self, block_id: str) -> BlockSpec | None:
        return self._blocks.get(block_id)

    def list_blocks(self) -> list[BlockSpec]:
        return list(self._blocks.values())

    def __contains__(self, block_id: str) -> bool:
        return block_id in self._blocks
