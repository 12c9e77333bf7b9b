"""Session traversal and FreeMind mind-map export."""

from __future__ import annotations

import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from tree_chat.tree import NodeIndex

if TYPE_CHECKING:
    from collections.abc import Iterator

    from tree_chat.models import ChatNode, Session

NO_SYSTEM_NODE = "Session has no system node"
SYSTEM_PREFIX = "System Prompt: "
USER_PREFIX = "\U0001f9d1‍\U0001f4bbUser: "
ASSISTANT_PREFIX = "\U0001f916Assistant: "
FREEMIND_VERSION = "1.0.1"


@dataclass
class MindMapNode:
    """Node of an exported mind map."""

    id: str
    text: str
    children: list[MindMapNode] = field(default_factory=list)


def iter_tree(session: Session) -> Iterator[ChatNode]:
    """Yield every node once: root first, then children in tree order."""
    return NodeIndex(session.nodes).walk()


def chat_text(node: ChatNode) -> str:
    """Render a chat node as the user/assistant pair shown in the mind map."""
    return f"{USER_PREFIX}{node.user_message}\n---\n{ASSISTANT_PREFIX}{node.assistant_message}"


def build_mindmap(session: Session) -> MindMapNode:
    """Build the mind-map tree: title, then system prompt, then the conversation.

    Raises:
        ValueError: If the session has no system node.
    """
    system = next((node for node in session.nodes if node.kind == "system"), None)
    if system is None:
        raise ValueError(NO_SYSTEM_NODE)

    index = NodeIndex(session.nodes)
    system_entry = MindMapNode(id=system.id, text=f"{SYSTEM_PREFIX}{system.user_message}")
    root = MindMapNode(id="root", text=session.title, children=[system_entry])

    seen = {system.id}
    stack = [(system.id, system_entry)]
    while stack:
        node_id, entry = stack.pop()
        for child in index.children(node_id):
            if child.id in seen:
                continue
            seen.add(child.id)
            child_entry = MindMapNode(id=child.id, text=chat_text(child))
            entry.children.append(child_entry)
            stack.append((child.id, child_entry))
    return root


def render_freemind(tree: MindMapNode, *, timestamp_ms: int | None = None) -> str:
    """Serialize a mind map as FreeMind ``.mm`` XML."""
    stamp = str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000))
    document = ET.Element("map", version=FREEMIND_VERSION)
    stack = [(tree, document)]
    while stack:
        entry, parent = stack.pop()
        element = ET.SubElement(
            parent, "node", ID=entry.id, TEXT=entry.text, CREATED=stamp, MODIFIED=stamp
        )
        stack.extend((child, element) for child in reversed(entry.children))
    body = ET.tostring(document, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


def export_filename(title: str) -> str:
    """Return the download file name for a session title."""
    return re.sub(r"[^a-z0-9]", "_", title, flags=re.IGNORECASE).lower() + "_mindmap.mm"


def write_mindmap(session: Session, path: str | Path | None = None) -> Path:
    """Write the session's mind map to ``path`` (defaults to ``export_filename``)."""
    target = Path(path) if path is not None else Path(export_filename(session.title))
    target.write_text(render_freemind(build_mindmap(session)), encoding="utf-8")
    return target
