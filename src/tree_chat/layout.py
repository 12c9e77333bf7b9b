"""Deterministic tree layout for the conversation canvas.

Two modes are provided:

- ``compute_layout`` recomputes every position. Each node gets a horizontal
  span as wide as its subtree; children partition their parent's span left to
  right, so sibling subtrees never overlap.
- ``place_new_nodes`` keeps every position that already exists (user drags
  included) and only places nodes without one, just below their parent.

Positions are top-left corners. Sizes come from the presentation layer once
measured; until then the configured defaults are used.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tree_chat.models import NodePosition
from tree_chat.tree import NodeIndex

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from tree_chat.models import ChatNode

NEGATIVE_SPACING = "Layout spacing and sizes must not be negative"


@dataclass(frozen=True)
class NodeSize:
    """Rendered size of a node as measured by the canvas."""

    width: float
    height: float


@dataclass(frozen=True)
class LayoutConfig:
    """Default node size and spacing used by the layout engine."""

    default_width: float = 350.0
    default_height: float = 250.0
    horizontal_spacing: float = 200.0
    vertical_spacing: float = 100.0
    sibling_offset: float = 40.0

    def __post_init__(self) -> None:
        values = (
            self.default_width,
            self.default_height,
            self.horizontal_spacing,
            self.vertical_spacing,
            self.sibling_offset,
        )
        if any(value < 0 for value in values):
            raise ValueError(NEGATIVE_SPACING)

    def size_of(self, node_id: str, sizes: Mapping[str, NodeSize]) -> NodeSize:
        """Return the measured size of a node, or the default size."""
        return sizes.get(node_id) or NodeSize(self.default_width, self.default_height)


@dataclass(frozen=True)
class TreeLayout:
    """Result of a full layout pass."""

    positions: dict[str, NodePosition] = field(default_factory=dict)
    spans: dict[str, tuple[float, float]] = field(default_factory=dict)
    subtree_widths: dict[str, float] = field(default_factory=dict)


@dataclass
class _Forest:
    roots: list[str]
    children: dict[str, list[str]]
    order: list[str]


def _build_forest(index: NodeIndex) -> _Forest:
    """Breadth-first order over every tree, each node claimed by one parent."""
    roots: list[str] = []
    children: dict[str, list[str]] = {}
    order: list[str] = []
    seen: set[str] = set()
    for root in index.roots():
        if root.id in seen:
            continue
        roots.append(root.id)
        seen.add(root.id)
        queue: deque[str] = deque([root.id])
        while queue:
            current = queue.popleft()
            order.append(current)
            claimed: list[str] = []
            for child_id in index.children_ids(current):
                if child_id in seen:
                    continue
                seen.add(child_id)
                claimed.append(child_id)
                queue.append(child_id)
            children[current] = claimed
    return _Forest(roots=roots, children=children, order=order)


def compute_layout(
    nodes: Iterable[ChatNode],
    sizes: Mapping[str, NodeSize] | None = None,
    config: LayoutConfig | None = None,
) -> TreeLayout:
    """Assign a position to every node.

    Args:
        nodes: The session's nodes in insertion order; sibling order follows it.
        sizes: Measured node sizes keyed by node id.
        config: Default sizes and spacing.

    Returns:
        Positions, allotted spans and subtree widths keyed by node id.
    """
    config = config or LayoutConfig()
    sizes = sizes or {}
    forest = _build_forest(NodeIndex(nodes))
    spacing = config.horizontal_spacing

    widths: dict[str, float] = {}
    for node_id in reversed(forest.order):
        own_width = config.size_of(node_id, sizes).width
        child_ids = forest.children[node_id]
        if not child_ids:
            widths[node_id] = own_width
            continue
        children_width = sum(widths[child_id] for child_id in child_ids)
        children_width += spacing * (len(child_ids) - 1)
        widths[node_id] = max(own_width, children_width)

    span_starts: dict[str, float] = {}
    tops: dict[str, float] = {}
    cursor: float | None = None
    for root_id in forest.roots:
        start = -widths[root_id] / 2 if cursor is None else cursor
        span_starts[root_id] = start
        tops[root_id] = 0.0
        cursor = start + widths[root_id] + spacing

    positions: dict[str, NodePosition] = {}
    spans: dict[str, tuple[float, float]] = {}
    for node_id in forest.order:
        size = config.size_of(node_id, sizes)
        start = span_starts[node_id]
        width = widths[node_id]
        y = tops[node_id]
        positions[node_id] = NodePosition(x=start + width / 2 - size.width / 2, y=y)
        spans[node_id] = (start, start + width)

        child_top = y + size.height + config.vertical_spacing
        child_start = start
        for child_id in forest.children[node_id]:
            span_starts[child_id] = child_start
            tops[child_id] = child_top
            child_start += widths[child_id] + spacing

    return TreeLayout(positions=positions, spans=spans, subtree_widths=widths)


def place_new_nodes(
    nodes: Iterable[ChatNode],
    sizes: Mapping[str, NodeSize] | None = None,
    config: LayoutConfig | None = None,
) -> dict[str, NodePosition]:
    """Place nodes lacking a position without moving any positioned node.

    A new node goes directly below its parent, shifted right by
    ``sibling_offset`` for every sibling already placed, so fresh children fan
    out instead of stacking. Unpositioned roots go where a full layout would
    put them.

    Returns:
        Positions for every node, existing ones unchanged.
    """
    config = config or LayoutConfig()
    sizes = sizes or {}
    node_list = list(nodes)
    index = NodeIndex(node_list)
    forest = _build_forest(index)

    positions: dict[str, NodePosition] = {}
    placed_siblings: dict[str | None, int] = {}
    for node in node_list:
        if node.position is None:
            continue
        positions[node.id] = node.position
        parent_key = node.parent_id if node.parent_id in index else None
        placed_siblings[parent_key] = placed_siblings.get(parent_key, 0) + 1

    for node_id in forest.order:
        if node_id in positions:
            continue
        node = index.get(node_id)
        parent = index.get(node.parent_id) if node is not None else None
        size = config.size_of(node_id, sizes)
        if parent is None or parent.id not in positions:
            count = placed_siblings.get(None, 0)
            positions[node_id] = NodePosition(
                x=-size.width / 2 + config.sibling_offset * count,
                y=0.0,
            )
            placed_siblings[None] = count + 1
            continue
        parent_position = positions[parent.id]
        parent_size = config.size_of(parent.id, sizes)
        count = placed_siblings.get(parent.id, 0)
        positions[node_id] = NodePosition(
            x=parent_position.x + config.sibling_offset * count,
            y=parent_position.y + parent_size.height + config.vertical_spacing,
        )
        placed_siblings[parent.id] = count + 1

    return positions
