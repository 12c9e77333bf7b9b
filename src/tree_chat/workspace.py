"""Workspace: wiring of all services plus the intents the canvas emits."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from tree_chat.generation import GenerationController
from tree_chat.layout import NodeSize, compute_layout, place_new_nodes
from tree_chat.models import ChatNode, NodePosition, Session
from tree_chat.registry import ModelRegistry, load_models_file
from tree_chat.settings import load_settings
from tree_chat.storage import SqliteRecordStore
from tree_chat.store import ConversationTreeStore
from tree_chat.transport import OpenAICompatibleTransport
from tree_chat.tree import NodeIndex
from tree_chat.utils import new_id, utc_timestamp
from tree_chat.view import build_flow_view

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tree_chat.generation import Generation
    from tree_chat.models import ModelEndpoint
    from tree_chat.settings import Settings
    from tree_chat.storage import RecordStore
    from tree_chat.transport import ChatTransport
    from tree_chat.view import FlowView

logger = logging.getLogger(__name__)

EditRole = Literal["system", "user", "assistant"]

DEFAULT_SESSION_TITLE = "New Conversation"
NO_MODELS = "No models are configured"
NO_SYSTEM_NODE = "Session has no system node"
RESIZE_THRESHOLD = 5.0


class Workspace:
    """Service container and intent surface for one user's conversations."""

    def __init__(
        self,
        settings: Settings,
        records: RecordStore,
        registry: ModelRegistry,
        store: ConversationTreeStore,
        controller: GenerationController,
        transport: ChatTransport,
        *,
        owns_transport: bool = False,
    ) -> None:
        """Initialize the workspace from already-loaded services."""
        self.settings = settings
        self.records = records
        self.registry = registry
        self.store = store
        self.controller = controller
        self.transport = transport
        self._owns_transport = owns_transport
        self._layout_config = settings.layout_config()
        self._sizes: dict[str, NodeSize] = {}

    async def aclose(self) -> None:
        """Cancel running generations and close the HTTP transport."""
        await self.controller.shutdown()
        if self._owns_transport and isinstance(self.transport, OpenAICompatibleTransport):
            await self.transport.aclose()

    # Sessions

    async def new_session(self, title: str = DEFAULT_SESSION_TITLE) -> Session:
        """Create an empty session and give it a system root if possible."""
        now = utc_timestamp()
        session = Session(id=new_id(), title=title, created_at=now, updated_at=now, nodes=[])
        await self.store.create_session(session)
        await self.ensure_root(session.id)
        return self.store.get_session(session.id)

    async def rename_session(self, session_id: str, title: str) -> Session:
        """Change a session's title."""
        session = self.store.get_session(session_id)
        return await self.store.update_session(session.model_copy(update={"title": title.strip()}))

    async def delete_session(self, session_id: str) -> None:
        """Cancel the session's generations, then delete it."""
        session = self.store.get_session(session_id)
        await self._cancel_nodes(node.id for node in session.nodes)
        await self.store.delete_session(session_id)
        self.controller.forget(node.id for node in session.nodes)
        for node in session.nodes:
            self._sizes.pop(node.id, None)

    async def ensure_root(self, session_id: str) -> ChatNode | None:
        """Create the system root of an empty session when a model exists.

        Returns:
            The session root, or None while no model is configured.
        """
        session = self.store.get_session(session_id)
        root = session.root()
        if root is not None:
            return root
        model = self.registry.default_model()
        if model is None:
            logger.debug("Session %s has no root yet: %s", session_id, NO_MODELS)
            return None
        root = ChatNode(
            id=new_id(),
            parent_id=None,
            kind="system",
            user_message=model.default_system_prompt,
            model_id=model.id,
            temperature=self.settings.default_temperature,
            max_tokens=self.settings.default_max_tokens,
            created_at=utc_timestamp(),
        )
        await self.store.add_node(session_id, root)
        await self.layout(session_id)
        return self.store.get_node(session_id, root.id)

    async def ensure_roots(self) -> int:
        """Give every empty session its system root.

        Returns:
            Number of roots created.
        """
        created = 0
        for session in self.store.list_sessions():
            if session.nodes:
                continue
            if await self.ensure_root(session.id) is None:
                break
            created += 1
        if created:
            logger.info("Created system roots for %d empty sessions", created)
        return created

    async def add_model(self, model: ModelEndpoint) -> ModelEndpoint:
        """Configure a new model and root any sessions that were waiting for one."""
        created = await self.registry.create_model(model)
        await self.ensure_roots()
        return created

    # Node intents

    async def add_child(self, session_id: str, parent_id: str) -> ChatNode:
        """Add an empty chat node under ``parent_id`` inheriting its settings."""
        parent = self.store.get_node(session_id, parent_id)
        node = self._new_chat_node(parent, user_message="")
        await self.store.add_node(session_id, node)
        await self.layout(session_id)
        return self.store.get_node(session_id, node.id)

    async def ingest_text(self, session_id: str, text: str) -> ChatNode:
        """Add a child of the system node pre-filled with extracted file text."""
        root = self.store.get_session(session_id).root()
        if root is None:
            raise ValueError(NO_SYSTEM_NODE)
        node = self._new_chat_node(root, user_message=text)
        await self.store.add_node(session_id, node)
        await self.layout(session_id)
        logger.info("Ingested %d chars into session %s", len(text), session_id)
        return self.store.get_node(session_id, node.id)

    async def edit(self, session_id: str, node_id: str, content: str, role: EditRole) -> ChatNode:
        """Replace the system prompt, user message or assistant reply of a node."""
        if role in ("system", "user"):
            return await self._update(session_id, node_id, user_message=content)
        if role == "assistant":
            return await self._update(session_id, node_id, assistant_message=content)
        msg = f"Unknown edit role: {role}"
        raise ValueError(msg)

    async def delete(self, session_id: str, node_id: str) -> set[str]:
        """Delete a node and its subtree, cancelling generations inside it."""
        session = self.store.get_session(session_id)
        doomed = NodeIndex(session.nodes).subtree_ids(node_id)
        await self._cancel_nodes(doomed)
        removed = await self.store.delete_node(session_id, node_id)
        self.controller.forget(doomed)
        for removed_id in removed:
            self._sizes.pop(removed_id, None)
        return removed

    async def retry(self, session_id: str, node_id: str) -> Generation:
        """Start (or restart) the reply generation of a node."""
        return await self.controller.start(session_id, node_id)

    async def cancel(self, node_id: str) -> bool:
        """Cancel the running generation of a node."""
        return await self.controller.cancel(node_id)

    async def change_model(self, session_id: str, node_id: str, model_id: str) -> ChatNode:
        """Point a node at another configured model."""
        self.registry.require_model(model_id)
        return await self._update(session_id, node_id, model_id=model_id)

    async def change_temperature(
        self, session_id: str, node_id: str, temperature: float
    ) -> ChatNode:
        """Set a node's sampling temperature (0.0 to 2.0)."""
        return await self._update(session_id, node_id, temperature=temperature)

    async def change_max_tokens(self, session_id: str, node_id: str, max_tokens: int) -> ChatNode:
        """Set a node's reply token limit."""
        return await self._update(session_id, node_id, max_tokens=max_tokens)

    async def drag_end(self, session_id: str, node_id: str, x: float, y: float) -> ChatNode:
        """Persist the position a user dragged a node to."""
        return await self._update(session_id, node_id, position=NodePosition(x=x, y=y))

    # Layout

    def measure(self, node_id: str, width: float, height: float) -> bool:
        """Record a rendered node size; changes of 5px or less are ignored.

        Returns:
            True if the stored size changed.
        """
        current = self._sizes.get(node_id)
        if current is not None and (
            abs(current.width - width) <= RESIZE_THRESHOLD
            and abs(current.height - height) <= RESIZE_THRESHOLD
        ):
            return False
        self._sizes[node_id] = NodeSize(width=width, height=height)
        return True

    def sizes(self) -> dict[str, NodeSize]:
        """Return measured node sizes keyed by node id."""
        return dict(self._sizes)

    async def layout(self, session_id: str, *, full: bool = False) -> Session:
        """Position nodes, either all of them or only those without a position."""
        session = self.store.get_session(session_id)
        if full:
            positions = compute_layout(session.nodes, self._sizes, self._layout_config).positions
        else:
            positions = place_new_nodes(session.nodes, self._sizes, self._layout_config)
        return await self.store.set_positions(session_id, positions)

    def view(self, session_id: str) -> FlowView:
        """Return the canvas view of a session with live streaming text merged."""
        return build_flow_view(self.store.get_session(session_id), self.controller.buffers())

    def _new_chat_node(self, parent: ChatNode, *, user_message: str) -> ChatNode:
        model_id = parent.model_id or self.registry.default_model_id
        if not model_id:
            raise ValueError(NO_MODELS)
        return ChatNode(
            id=new_id(),
            parent_id=parent.id,
            kind="chat",
            user_message=user_message,
            model_id=model_id,
            temperature=parent.temperature,
            max_tokens=parent.max_tokens,
            created_at=utc_timestamp(),
        )

    async def _update(self, session_id: str, node_id: str, **changes: Any) -> ChatNode:
        return await self.store.modify_node(session_id, node_id, **changes)

    async def _cancel_nodes(self, node_ids: Iterable[str]) -> None:
        active = self.controller.active_node_ids()
        for node_id in node_ids:
            if node_id in active:
                await self.controller.cancel(node_id)


async def build_workspace(
    settings: Settings | None = None,
    *,
    records: RecordStore | None = None,
    transport: ChatTransport | None = None,
) -> Workspace:
    """Build and load every service.

    Args:
        settings: Runtime settings; loaded from the environment when omitted.
        records: Record store; a SQLite file under ``storage_dir`` by default.
        transport: Model transport; an httpx client by default.
    """
    settings = settings or load_settings()
    records = records or SqliteRecordStore(settings.db_path)

    registry = ModelRegistry(records)
    await registry.load()
    if settings.models_file:
        for model in load_models_file(settings.models_file):
            await registry.register(model)

    store = ConversationTreeStore(records)
    await store.load()

    owns_transport = transport is None
    if transport is None:
        transport = OpenAICompatibleTransport(timeout=settings.request_timeout)
    controller = GenerationController(store, registry, transport)
    workspace = Workspace(
        settings,
        records,
        registry,
        store,
        controller,
        transport,
        owns_transport=owns_transport,
    )
    await workspace.ensure_roots()
    logger.info(
        "Workspace ready: %d sessions, %d models",
        len(store.list_sessions()),
        len(registry.list_models()),
    )
    return workspace
