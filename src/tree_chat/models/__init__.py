"""Pydantic records for sessions, nodes and model endpoints."""

from tree_chat.models.base import RecordModel
from tree_chat.models.conversation import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    ChatNode,
    NodeKind,
    NodePosition,
    Session,
)
from tree_chat.models.endpoint import ModelEndpoint

__all__ = [
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_TEMPERATURE",
    "ChatNode",
    "ModelEndpoint",
    "NodeKind",
    "NodePosition",
    "RecordModel",
    "Session",
]
