"""Conversation tree store: the single writer of sessions and their nodes.

Every mutation builds a new ``Session`` record, persists the whole record
through the record store, and only then swaps it into memory. A failed write
leaves the in-memory state exactly as it was.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from tree_chat.errors import (
    DuplicateIdError,
    InvalidParentError,
    NodeNotFoundError,
    SessionNotFoundError,
)
from tree_chat.models import ChatNode
from tree_chat.tree import NodeIndex
from tree_chat.utils import next_timestamp

if TYPE_CHECKING:
    from collections.abc import Mapping

    from tree_chat.models import NodePosition, Session
    from tree_chat.storage import RecordStore

logger = logging.getLogger(__name__)

ROOT_MUST_BE_SYSTEM = "The first node of a session must be a system root"
SECOND_ROOT = "Session already has a root node"
SYSTEM_NEEDS_NO_PARENT = "System nodes can only be the session root"
REPARENT_REJECTED = "Nodes cannot be moved to another parent"


class ConversationTreeStore:
    """Canonical in-memory list of sessions backed by a record store."""

    def __init__(self, records: RecordStore) -> None:
        """Initialize an empty store bound to ``records``."""
        self._records = records
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def load(self) -> None:
        """Hydrate sessions from the record store.

        Nodes persisted mid-generation are reset to not streaming, since no
        generation survives a restart.
        """
        sessions = await self._records.list_sessions()
        self._sessions = {session.id: _clear_streaming(session) for session in sessions}
        logger.info("Loaded %d sessions", len(self._sessions))

    def list_sessions(self) -> list[Session]:
        """Return sessions ordered by most recent update."""
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def search_sessions(self, query: str) -> list[Session]:
        """Return sessions whose title contains ``query`` (case-insensitive)."""
        needle = query.strip().lower()
        sessions = self.list_sessions()
        if not needle:
            return sessions
        return [session for session in sessions if needle in session.title.lower()]

    def get_session(self, session_id: str) -> Session:
        """Return a session or raise ``SessionNotFoundError``."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_node(self, session_id: str, node_id: str) -> ChatNode:
        """Return a node or raise ``NodeNotFoundError``."""
        node = self.get_session(session_id).find_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id, session_id)
        return node

    def children(self, session_id: str, node_id: str) -> list[ChatNode]:
        """Return the children of a node in tree order."""
        return NodeIndex(self.get_session(session_id).nodes).children(node_id)

    async def create_session(self, session: Session) -> Session:
        """Insert a new session record."""
        async with self._lock(session.id):
            if session.id in self._sessions:
                msg = f"Session '{session.id}' already exists"
                raise DuplicateIdError(msg)
            await self._records.put_session(session)
            self._sessions[session.id] = session
        logger.debug("Created session %s (%s)", session.id, session.title)
        return session

    async def update_session(self, session: Session) -> Session:
        """Replace a whole session record."""
        async with self._lock(session.id):
            current = self.get_session(session.id)
            updated = session.model_copy(update={"updated_at": next_timestamp(current.updated_at)})
            return await self._commit(updated)

    async def delete_session(self, session_id: str) -> None:
        """Delete a session; unknown ids are ignored."""
        async with self._lock(session_id):
            if session_id not in self._sessions:
                return
            await self._records.delete_session(session_id)
            del self._sessions[session_id]
        self._locks.pop(session_id, None)
        logger.debug("Deleted session %s", session_id)

    async def add_node(self, session_id: str, node: ChatNode) -> Session:
        """Append a node to a session.

        Raises:
            SessionNotFoundError: If the session does not exist.
            DuplicateIdError: If the node id is already used in the session.
            InvalidParentError: If the parent is missing or the root rule breaks.
        """
        async with self._lock(session_id):
            session = self.get_session(session_id)
            index = NodeIndex(session.nodes)
            if node.id in index:
                msg = f"Node '{node.id}' already exists in session {session_id}"
                raise DuplicateIdError(msg)
            _check_parent(index, node)
            return await self._commit(_with_nodes(session, [*session.nodes, node]))

    async def update_node(self, session_id: str, node: ChatNode) -> Session:
        """Replace a node record in place; its parent must not change."""
        async with self._lock(session_id):
            session = self.get_session(session_id)
            current = session.find_node(node.id)
            if current is None:
                raise NodeNotFoundError(node.id, session_id)
            if current.parent_id != node.parent_id:
                raise InvalidParentError(REPARENT_REJECTED)
            nodes = [node if existing.id == node.id else existing for existing in session.nodes]
            return await self._commit(_with_nodes(session, nodes))

    async def modify_node(self, session_id: str, node_id: str, **changes: Any) -> ChatNode:
        """Apply field changes to the node's current record.

        The record is read and written under the session lock, so fields not
        named in ``changes`` keep whatever value the last writer stored.

        Raises:
            SessionNotFoundError: If the session does not exist.
            NodeNotFoundError: If the node does not exist.
            pydantic.ValidationError: If a changed value is invalid.
        """
        async with self._lock(session_id):
            session = self.get_session(session_id)
            current = session.find_node(node_id)
            if current is None:
                raise NodeNotFoundError(node_id, session_id)
            node = ChatNode.model_validate({**current.model_dump(), **changes})
            if node.parent_id != current.parent_id:
                raise InvalidParentError(REPARENT_REJECTED)
            nodes = [node if existing.id == node_id else existing for existing in session.nodes]
            await self._commit(_with_nodes(session, nodes))
            return node

    async def delete_node(self, session_id: str, node_id: str) -> set[str]:
        """Delete a node and its whole subtree.

        Returns:
            Ids of removed nodes; empty when the node does not exist.
        """
        async with self._lock(session_id):
            session = self.get_session(session_id)
            removed = NodeIndex(session.nodes).subtree_ids(node_id)
            if not removed:
                return removed
            nodes = [node for node in session.nodes if node.id not in removed]
            await self._commit(_with_nodes(session, nodes))
        logger.debug("Deleted %d nodes from session %s", len(removed), session_id)
        return removed

    async def set_positions(
        self, session_id: str, positions: Mapping[str, NodePosition]
    ) -> Session:
        """Apply a batch of node positions in a single mutation."""
        async with self._lock(session_id):
            session = self.get_session(session_id)
            changed = False
            nodes: list[ChatNode] = []
            for node in session.nodes:
                position = positions.get(node.id)
                if position is not None and position != node.position:
                    node = node.model_copy(update={"position": position})
                    changed = True
                nodes.append(node)
            if not changed:
                return session
            return await self._commit(_with_nodes(session, nodes))

    def _lock(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    async def _commit(self, session: Session) -> Session:
        await self._records.put_session(session)
        self._sessions[session.id] = session
        return session


def _with_nodes(session: Session, nodes: list[ChatNode]) -> Session:
    return session.model_copy(
        update={"nodes": nodes, "updated_at": next_timestamp(session.updated_at)}
    )


def _check_parent(index: NodeIndex, node: ChatNode) -> None:
    if node.parent_id is None:
        if index.root() is not None:
            raise InvalidParentError(SECOND_ROOT)
        if node.kind != "system":
            raise InvalidParentError(ROOT_MUST_BE_SYSTEM)
        return
    if len(index) == 0:
        raise InvalidParentError(ROOT_MUST_BE_SYSTEM)
    if node.kind == "system":
        raise InvalidParentError(SYSTEM_NEEDS_NO_PARENT)
    if node.parent_id not in index:
        msg = f"Parent '{node.parent_id}' of node '{node.id}' does not exist"
        raise InvalidParentError(msg)


def _clear_streaming(session: Session) -> Session:
    if not any(node.is_streaming for node in session.nodes):
        return session
    nodes = [
        node.model_copy(update={"is_streaming": False}) if node.is_streaming else node
        for node in session.nodes
    ]
    logger.info("Reset interrupted generations in session %s", session.id)
    return session.model_copy(update={"nodes": nodes})
