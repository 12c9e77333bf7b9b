from tree_chat.context import ChatMessage, resolve_context
from tree_chat.errors import (
    DuplicateIdError,
    GenerationCancelled,
    GenerationError,
    InvalidParentError,
    ModelNotFoundError,
    NodeNotFoundError,
    PersistenceError,
    SessionNotFoundError,
    TreeChatError,
)
from tree_chat.export import build_mindmap, export_filename, iter_tree, render_freemind
from tree_chat.generation import (
    Generation,
    GenerationController,
    GenerationState,
    GenerationUpdate,
)
from tree_chat.layout import LayoutConfig, NodeSize, TreeLayout, compute_layout, place_new_nodes
from tree_chat.models import ChatNode, ModelEndpoint, NodePosition, Session
from tree_chat.registry import ModelRegistry, load_models_file
from tree_chat.settings import Settings, load_settings
from tree_chat.storage import InMemoryRecordStore, RecordStore, SqliteRecordStore
from tree_chat.store import ConversationTreeStore
from tree_chat.transport import ChatRequest, ChatTransport, OpenAICompatibleTransport
from tree_chat.tree import NodeIndex
from tree_chat.view import FlowEdge, FlowNode, FlowView, build_flow_view
from tree_chat.workspace import Workspace, build_workspace

__all__ = [
    "ChatMessage",
    "ChatNode",
    "ChatRequest",
    "ChatTransport",
    "ConversationTreeStore",
    "DuplicateIdError",
    "FlowEdge",
    "FlowNode",
    "FlowView",
    "Generation",
    "GenerationCancelled",
    "GenerationController",
    "GenerationError",
    "GenerationState",
    "GenerationUpdate",
    "InMemoryRecordStore",
    "InvalidParentError",
    "LayoutConfig",
    "ModelEndpoint",
    "ModelNotFoundError",
    "ModelRegistry",
    "NodeIndex",
    "NodeNotFoundError",
    "NodePosition",
    "NodeSize",
    "OpenAICompatibleTransport",
    "PersistenceError",
    "RecordStore",
    "Session",
    "SessionNotFoundError",
    "Settings",
    "SqliteRecordStore",
    "TreeChatError",
    "TreeLayout",
    "build_flow_view",
    "build_mindmap",
    "build_workspace",
    "compute_layout",
    "export_filename",
    "iter_tree",
    "load_models_file",
    "load_settings",
    "place_new_nodes",
    "render_freemind",
    "resolve_context",
]
