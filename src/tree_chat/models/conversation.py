"""Conversation records: sessions and the nodes of their trees."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from tree_chat.models.base import RecordModel

NodeKind = Literal["system", "chat"]

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048


class NodePosition(RecordModel):
    """Top-left canvas coordinates of a node."""

    x: float
    y: float


class ChatNode(RecordModel):
    """One message pair in a conversation tree.

    The root of every initialised session is a ``system`` node whose
    ``user_message`` holds the system prompt. ``chat`` nodes carry the user
    turn and, once a generation completes, the assistant reply.
    """

    id: str
    parent_id: str | None = Field(alias="parentId")
    kind: NodeKind = Field(alias="type")
    user_message: str = Field(default="", alias="userMessage")
    assistant_message: str = Field(default="", alias="assistantMessage")
    model_id: str = Field(alias="modelId")
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0, alias="maxTokens")
    created_at: str = Field(alias="createdAt")
    is_streaming: bool = Field(default=False, alias="isStreaming")
    error: str | None = None
    position: NodePosition | None = None

    @property
    def is_root(self) -> bool:
        """Return True for the session's system root."""
        return self.parent_id is None


class Session(RecordModel):
    """A named conversation holding an unordered collection of nodes."""

    id: str
    title: str
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    nodes: list[ChatNode] = Field(default_factory=list)

    def find_node(self, node_id: str) -> ChatNode | None:
        """Return the node with ``node_id`` or None."""
        return next((node for node in self.nodes if node.id == node_id), None)

    def root(self) -> ChatNode | None:
        """Return the system root node if the session is initialised."""
        return next((node for node in self.nodes if node.parent_id is None), None)
