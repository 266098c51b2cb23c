"""
Workflow Graph Model - Nodes and edges as submitted by the builder UI.

Nodes are typed blocks:
- trigger: starts a run, its payload is synthesized from config
- ai / utility: delegate to the block runner via ``block_ref``
- condition: pass-through filters that may stop the run
- action: best-effort side effects

The model is plain data. Planning and execution live in
``blockflow.graph.plan`` and ``blockflow.graph.executor``.

Both the flat shape and the builder's nested shape are accepted:

    {"id": "n1", "category": "ai", "blockRef": "summarize-text", "config": {}}
    {"id": "n1", "data": {"category": "ai", "blockId": "summarize-text", "label": "Summarize"}}
"""

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, model_validator

# Payload flowing along edges: text, value, audioBase64, ...
Payload = dict[str, Any]


class NodeCategory(StrEnum):
    """Closed set of node kinds the executor dispatches on."""

    TRIGGER = "trigger"
    AI = "ai"
    UTILITY = "utility"
    CONDITION = "condition"
    ACTION = "action"


class Node(BaseModel):
    """A block placed on the canvas."""

    id: str
    category: NodeCategory
    block_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("block_ref", "blockRef", "blockId"),
        serialization_alias="blockRef",
        description="External block id for ai/utility nodes",
    )
    block_type: str = Field(
        default="",
        validation_alias=AliasChoices("block_type", "blockType"),
        serialization_alias="blockType",
        description="Concrete kind, e.g. 'text_contains', 'webhook', 'manual'",
    )
    label: str = Field(default="", validation_alias=AliasChoices("label", "name"))
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow", "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def _flatten_data(cls, value: Any) -> Any:
        # Builder nodes nest everything but the id under "data"
        if isinstance(value, dict) and isinstance(value.get("data"), dict):
            flat = {k: v for k, v in value.items() if k != "data"}
            for key, item in value["data"].items():
                flat.setdefault(key, item)
            return flat
        return value

    @property
    def name(self) -> str:
        """Display name used in progress events."""
        return self.label or self.block_type or self.id


class Edge(BaseModel):
    """A directed connection between two nodes."""

    id: str = ""
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    source_handle: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_handle", "sourceHandle"),
        serialization_alias="sourceHandle",
    )
    target_handle: str | None = Field(
        default=None,
        validation_alias=AliasChoices("target_handle", "targetHandle"),
        serialization_alias="targetHandle",
    )

    model_config = {"extra": "allow", "populate_by_name": True}

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target


class WorkflowGraph(BaseModel):
    """
    The caller-supplied graph for a single run.

    Example:
        graph = WorkflowGraph(
            nodes=[
                Node(id="t", category="trigger", config={"text": "hello"}),
                Node(id="s", category="ai", block_ref="summarize-text"),
            ],
            edges=[Edge(id="e1", source="t", target="s")],
        )
    """

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def node_map(self) -> dict[str, Node]:
        """Nodes addressed by id. Later duplicates never shadow earlier ones."""
        index: dict[str, Node] = {}
        for node in self.nodes:
            index.setdefault(node.id, node)
        return index

    def get_node(self, node_id: str) -> Node | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[Edge]:
        """Get all edges leaving a node, in definition order."""
        return [e for e in self.edges if e.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[Edge]:
        """Get all edges entering a node, in definition order."""
        return [e for e in self.edges if e.target == node_id]

    def has_self_loop(self, node_id: str) -> bool:
        return any(e.source == node_id and e.is_self_loop for e in self.edges)
