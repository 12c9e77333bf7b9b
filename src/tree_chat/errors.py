"""Error taxonomy for the conversation tree and generation services.

Structural errors (unknown session, node or parent) signal an inconsistent
caller and are raised loudly. ``PersistenceError`` aborts the mutation that
triggered it. ``GenerationError`` is recorded on the node that failed, and
``GenerationCancelled`` is a normal termination state that never reaches users.
"""

from __future__ import annotations


class TreeChatError(Exception):
    """Base class for all tree_chat errors."""


class SessionNotFoundError(TreeChatError, LookupError):
    """Raised when a session id does not resolve."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Unknown session id: {session_id}")


class NodeNotFoundError(TreeChatError, LookupError):
    """Raised when a node id does not resolve within its session."""

    def __init__(self, node_id: str, session_id: str | None = None) -> None:
        self.node_id = node_id
        self.session_id = session_id
        where = f" in session {session_id}" if session_id else ""
        super().__init__(f"Unknown node id: {node_id}{where}")


class ModelNotFoundError(TreeChatError, LookupError):
    """Raised when a model id is not configured in the registry."""

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(f"Model '{model_id}' is not configured")


class InvalidParentError(TreeChatError, ValueError):
    """Raised when a node's parent is missing or would break the single-root rule."""


class DuplicateIdError(TreeChatError, ValueError):
    """Raised when inserting a record whose id already exists."""


class PersistenceError(TreeChatError):
    """Raised when the record store fails to read or write a record."""


class GenerationError(TreeChatError):
    """Raised by transports for network or model-side failures."""


class GenerationCancelled(TreeChatError):
    """Raised inside a generation when its cancellation signal fires."""
