"""Canvas view models derived from a session and live generation buffers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field

from tree_chat.models import NodeKind, NodePosition, RecordModel
from tree_chat.tree import NodeIndex

if TYPE_CHECKING:
    from collections.abc import Mapping

    from tree_chat.models import ChatNode, Session


class FlowNodeData(RecordModel):
    """Content rendered inside a canvas node."""

    user_message: str = Field(alias="userMessage")
    assistant_message: str = Field(alias="assistantMessage")
    model_id: str = Field(alias="modelId")
    temperature: float
    max_tokens: int = Field(alias="maxTokens")
    is_streaming: bool = Field(alias="isStreaming")
    error: str | None = None
    child_count: int = Field(default=0, alias="childCount")


class FlowNode(RecordModel):
    """Canvas node."""

    id: str
    type: NodeKind
    position: NodePosition | None = None
    data: FlowNodeData


class FlowEdge(RecordModel):
    """Canvas edge from a parent node to one of its children."""

    id: str
    source: str
    target: str


class FlowView(RecordModel):
    """Everything the canvas needs to draw one session."""

    session_id: str = Field(alias="sessionId")
    nodes: list[FlowNode]
    edges: list[FlowEdge]


def edge_id(parent_id: str, child_id: str) -> str:
    """Return the canvas edge id for a parent/child pair."""
    return f"e-{parent_id}-{child_id}"


def build_flow_view(session: Session, buffers: Mapping[str, str] | None = None) -> FlowView:
    """Build canvas nodes and edges, merging live text of streaming nodes.

    Args:
        session: Session to render.
        buffers: Partial replies keyed by node id; these override the stored
            assistant message while a generation is in flight.
    """
    buffers = buffers or {}
    index = NodeIndex(session.nodes)
    nodes = [_to_flow_node(node, index, buffers) for node in session.nodes]
    edges = [
        FlowEdge(id=edge_id(node.parent_id, node.id), source=node.parent_id, target=node.id)
        for node in session.nodes
        if node.parent_id is not None and node.parent_id in index
    ]
    return FlowView(session_id=session.id, nodes=nodes, edges=edges)


def _to_flow_node(node: ChatNode, index: NodeIndex, buffers: Mapping[str, str]) -> FlowNode:
    live_text = buffers.get(node.id)
    return FlowNode(
        id=node.id,
        type=node.kind,
        position=node.position,
        data=FlowNodeData(
            user_message=node.user_message,
            assistant_message=live_text if live_text is not None else node.assistant_message,
            model_id=node.model_id,
            temperature=node.temperature,
            max_tokens=node.max_tokens,
            is_streaming=node.is_streaming or live_text is not None,
            error=node.error,
            child_count=len(index.children_ids(node.id)),
        ),
    )
