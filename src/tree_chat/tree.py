"""Arena and parent->children index over a session's flat node list.

Nodes only know their parent. ``NodeIndex`` keeps the flat arena keyed by id
plus a children map so that traversals stay linear on large trees.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from tree_chat.models import ChatNode


class NodeIndex:
    """Read-only view of a node collection with children lookups."""

    def __init__(self, nodes: Iterable[ChatNode]) -> None:
        self._nodes: dict[str, ChatNode] = {}
        self._children: dict[str | None, list[str]] = {}
        for node in nodes:
            self._nodes[node.id] = node
            self._children.setdefault(node.parent_id, []).append(node.id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str | None) -> ChatNode | None:
        """Return a node by id if present."""
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def nodes(self) -> list[ChatNode]:
        """Return nodes in insertion order."""
        return list(self._nodes.values())

    def children_ids(self, node_id: str | None) -> list[str]:
        """Return child ids of ``node_id`` in insertion order."""
        return list(self._children.get(node_id, []))

    def children(self, node_id: str | None) -> list[ChatNode]:
        """Return child nodes of ``node_id`` in insertion order."""
        return [self._nodes[child_id] for child_id in self._children.get(node_id, [])]

    def root(self) -> ChatNode | None:
        """Return the first node without a parent."""
        roots = self._children.get(None, [])
        return self._nodes[roots[0]] if roots else None

    def roots(self) -> list[ChatNode]:
        """Return every node that starts a tree.

        Besides the real root this includes nodes whose parent is missing from
        the arena, so callers that must visit every node still reach them.
        """
        result = [self._nodes[node_id] for node_id in self._children.get(None, [])]
        result.extend(
            node
            for node in self._nodes.values()
            if node.parent_id is not None and node.parent_id not in self._nodes
        )
        return result

    def subtree_ids(self, node_id: str) -> set[str]:
        """Return ``node_id`` and every descendant id (breadth-first closure)."""
        if node_id not in self._nodes:
            return set()
        closure: set[str] = {node_id}
        queue: deque[str] = deque([node_id])
        while queue:
            current = queue.popleft()
            for child_id in self._children.get(current, []):
                if child_id in closure:
                    continue
                closure.add(child_id)
                queue.append(child_id)
        return closure

    def ancestors(self, node_id: str) -> list[ChatNode]:
        """Return ancestors from the parent up to the root.

        The walk stops early at a missing parent or a revisited node.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return []
        chain: list[ChatNode] = []
        seen: set[str] = {node_id}
        current = self.get(node.parent_id)
        while current is not None and current.id not in seen:
            chain.append(current)
            seen.add(current.id)
            current = self.get(current.parent_id)
        return chain

    def walk(self) -> Iterator[ChatNode]:
        """Yield every node once: roots first, then depth-first in tree order."""
        seen: set[str] = set()
        for root in self.roots():
            stack = [root.id]
            while stack:
                current = stack.pop()
                if current in seen:
                    continue
                seen.add(current)
                yield self._nodes[current]
                stack.extend(reversed(self._children.get(current, [])))
