"""Context reconstruction: turn a path in the tree into a linear prompt."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from tree_chat.errors import NodeNotFoundError
from tree_chat.tree import NodeIndex

if TYPE_CHECKING:
    from tree_chat.models import ModelEndpoint, Session

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """A single prompt turn sent to the model."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        """Serialize to the ``{"role", "content"}`` wire shape."""
        return {"role": self.role, "content": self.content}


def resolve_context(
    session: Session,
    node_id: str,
    *,
    model: ModelEndpoint | None = None,
    system_override: str | None = None,
    index: NodeIndex | None = None,
) -> list[ChatMessage]:
    """Build the ordered prompt for generating the reply of ``node_id``.

    The system prompt comes from ``system_override``, then the root system
    node, then the model's default prompt. Every ``chat`` ancestor contributes
    its user and assistant turns (empty ones are skipped) in root-to-node order,
    and the target's own user message closes the prompt.

    Raises:
        NodeNotFoundError: If ``node_id`` is not part of the session.
    """
    index = index or NodeIndex(session.nodes)
    target = index.get(node_id)
    if target is None:
        raise NodeNotFoundError(node_id, session.id)

    messages: list[ChatMessage] = []
    system_prompt = _system_prompt(index, model, system_override)
    if system_prompt:
        messages.append(ChatMessage(role="system", content=system_prompt))

    for ancestor in reversed(index.ancestors(node_id)):
        if ancestor.kind != "chat":
            continue
        if ancestor.user_message:
            messages.append(ChatMessage(role="user", content=ancestor.user_message))
        if ancestor.assistant_message:
            messages.append(ChatMessage(role="assistant", content=ancestor.assistant_message))

    messages.append(ChatMessage(role="user", content=target.user_message))
    return messages


def _system_prompt(
    index: NodeIndex,
    model: ModelEndpoint | None,
    system_override: str | None,
) -> str:
    if system_override:
        return system_override
    root = index.root()
    if root is not None and root.kind == "system" and root.user_message:
        return root.user_message
    return model.default_system_prompt if model is not None else ""
