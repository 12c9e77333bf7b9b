"""Streaming generation controller.

Owns every outbound model call. Each node has at most one active attempt;
starting a new one cancels and awaits the previous attempt first. Partial
output lives in a side table until the attempt completes, so the tree store
only ever sees finished replies.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from tree_chat.context import resolve_context
from tree_chat.errors import (
    GenerationCancelled,
    GenerationError,
    ModelNotFoundError,
    NodeNotFoundError,
    PersistenceError,
    SessionNotFoundError,
)
from tree_chat.logging_utils import set_generation_node_id
from tree_chat.transport import ChatRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from tree_chat.registry import ModelRegistry
    from tree_chat.store import ConversationTreeStore
    from tree_chat.transport import ChatTransport

logger = logging.getLogger(__name__)

SYSTEM_NODE_REPLY = "System nodes do not generate replies"


class GenerationState(StrEnum):
    """Lifecycle of a single generation attempt."""

    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {GenerationState.COMPLETED, GenerationState.FAILED, GenerationState.CANCELLED}
)


@dataclass(frozen=True)
class GenerationUpdate:
    """Notification pushed to listeners for each chunk and state change."""

    session_id: str
    node_id: str
    state: GenerationState
    chunk: str = ""
    text: str = ""


@dataclass
class Generation:
    """Handle for one generation attempt."""

    session_id: str
    node_id: str
    state: GenerationState = GenerationState.IDLE
    error: str | None = None
    chunks: list[str] = field(default_factory=list)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def text(self) -> str:
        """Return the text received so far."""
        return "".join(self.chunks)

    @property
    def done(self) -> bool:
        """Return True once the attempt reached a terminal state."""
        return self.state in TERMINAL_STATES

    async def wait(self) -> GenerationState:
        """Wait for the attempt's task to finish and return its final state."""
        if self.task is not None:
            await asyncio.wait({self.task})
        return self.state


class GenerationController:
    """Starts, cancels and writes back streaming generations."""

    def __init__(
        self,
        store: ConversationTreeStore,
        registry: ModelRegistry,
        transport: ChatTransport,
    ) -> None:
        """Initialize the controller with its collaborators."""
        self._store = store
        self._registry = registry
        self._transport = transport
        self._generations: dict[str, Generation] = {}
        self._buffers: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[Callable[[GenerationUpdate], None]] = []

    async def start(self, session_id: str, node_id: str) -> Generation:
        """Start a generation for ``node_id``, superseding any active attempt.

        Raises:
            SessionNotFoundError: If the session does not exist.
            NodeNotFoundError: If the node does not exist.
            ValueError: If the node is the system root.
        """
        async with self._lock(node_id):
            previous = self._generations.get(node_id)
            if previous is not None:
                await self._stop(previous, release=False)

            session = self._store.get_session(session_id)
            node = self._store.get_node(session_id, node_id)
            if node.kind == "system":
                raise ValueError(SYSTEM_NODE_REPLY)

            generation = Generation(session_id=session_id, node_id=node_id)
            self._generations[node_id] = generation

            model = self._registry.get_model(node.model_id)
            if model is None:
                message = str(ModelNotFoundError(node.model_id))
                logger.warning("Cannot generate for node %s: %s", node_id, message)
                generation.state = GenerationState.FAILED
                generation.error = message
                await self._store.modify_node(
                    session_id, node_id, is_streaming=False, error=message
                )
                self._notify(generation)
                return generation

            messages = resolve_context(session, node_id, model=model)
            try:
                await self._store.modify_node(session_id, node_id, is_streaming=True, error=None)
            except PersistenceError:
                del self._generations[node_id]
                raise

            request = ChatRequest(
                base_url=model.base_url,
                api_key=model.api_key,
                model_name=model.model_name,
                messages=messages,
                temperature=node.temperature,
                max_tokens=node.max_tokens,
                cancel_event=generation.cancel_event,
            )
            generation.state = GenerationState.STREAMING
            self._buffers[node_id] = ""
            generation.task = asyncio.create_task(
                self._run(generation, request), name=f"generation-{node_id}"
            )
            logger.info(
                "Started generation for node %s with model %s (%d messages)",
                node_id,
                model.id,
                len(messages),
            )
            return generation

    async def cancel(self, node_id: str) -> bool:
        """Cancel the active attempt for ``node_id``.

        Returns:
            True if a streaming attempt was cancelled.
        """
        async with self._lock(node_id):
            generation = self._generations.get(node_id)
            if generation is None or generation.done:
                return False
            await self._stop(generation, release=True)
            return True

    async def shutdown(self) -> None:
        """Cancel every streaming attempt and wait for all tasks to finish."""
        active = [gen for gen in self._generations.values() if not gen.done]
        results = await asyncio.gather(
            *(self.cancel(gen.node_id) for gen in active), return_exceptions=True
        )
        for generation, result in zip(active, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to stop generation for node %s: %s", generation.node_id, result
                )
        pending = [gen.task for gen in self._generations.values() if gen.task is not None]
        if pending:
            await asyncio.wait(pending)

    def subscribe(self, listener: Callable[[GenerationUpdate], None]) -> Callable[[], None]:
        """Register a listener for chunks and state changes.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def partial_text(self, node_id: str) -> str | None:
        """Return the live buffer of a streaming node, or None."""
        return self._buffers.get(node_id)

    def buffers(self) -> dict[str, str]:
        """Return a snapshot of every live buffer keyed by node id."""
        return dict(self._buffers)

    def active_node_ids(self) -> set[str]:
        """Return ids of nodes with a streaming attempt."""
        return {
            node_id
            for node_id, generation in self._generations.items()
            if generation.state is GenerationState.STREAMING
        }

    def state(self, node_id: str) -> GenerationState:
        """Return the state of the latest attempt for ``node_id``."""
        generation = self._generations.get(node_id)
        return generation.state if generation is not None else GenerationState.IDLE

    def get(self, node_id: str) -> Generation | None:
        """Return the latest attempt for ``node_id``."""
        return self._generations.get(node_id)

    def forget(self, node_ids: Iterable[str]) -> None:
        """Drop finished attempts and per-node state for removed nodes.

        Attempts that are still running are kept; cancel them first.
        """
        for node_id in node_ids:
            generation = self._generations.get(node_id)
            if generation is not None and not generation.done:
                continue
            self._generations.pop(node_id, None)
            self._buffers.pop(node_id, None)
            lock = self._locks.get(node_id)
            if lock is not None and not lock.locked():
                del self._locks[node_id]

    async def _run(self, generation: Generation, request: ChatRequest) -> None:
        set_generation_node_id(generation.node_id)
        try:
            async for chunk in self._transport.stream(request):
                if generation.state is not GenerationState.STREAMING:
                    break
                generation.chunks.append(chunk)
                if self._generations.get(generation.node_id) is generation:
                    self._buffers[generation.node_id] = generation.text
                self._notify(generation, chunk)
        except GenerationCancelled:
            self._mark_cancelled(generation)
            return
        except asyncio.CancelledError:
            self._mark_cancelled(generation)
            raise
        except GenerationError as exc:
            await self._fail(generation, str(exc))
            return
        except Exception as exc:
            logger.exception("Transport failed for node %s", generation.node_id)
            await self._fail(generation, f"Generation failed: {exc}")
            return

        if generation.state is GenerationState.STREAMING:
            await self._complete(generation)

    async def _complete(self, generation: Generation) -> None:
        text = generation.text
        generation.state = GenerationState.COMPLETED
        self._drop_buffer(generation)
        try:
            written = await self._write_back(
                generation, {"assistant_message": text, "is_streaming": False, "error": None}
            )
        except PersistenceError as exc:
            logger.exception("Failed to store reply for node %s", generation.node_id)
            generation.state = GenerationState.FAILED
            generation.error = str(exc)
        else:
            if written:
                logger.info(
                    "Generation for node %s finished (%d chars)", generation.node_id, len(text)
                )
            else:
                generation.state = GenerationState.CANCELLED
        self._notify(generation)

    async def _fail(self, generation: Generation, message: str) -> None:
        generation.state = GenerationState.FAILED
        generation.error = message
        self._drop_buffer(generation)
        logger.warning("Generation for node %s failed: %s", generation.node_id, message)
        try:
            await self._write_back(generation, {"is_streaming": False, "error": message})
        except PersistenceError:
            logger.exception("Failed to record error for node %s", generation.node_id)
        self._notify(generation)

    async def _stop(self, generation: Generation, *, release: bool) -> None:
        """Cancel a streaming attempt and wait until its task has exited."""
        stopped = False
        if generation.state is GenerationState.STREAMING:
            generation.cancel_event.set()
            self._mark_cancelled(generation)
            if generation.task is not None:
                generation.task.cancel()
            stopped = True
        if generation.task is not None:
            await asyncio.wait({generation.task})
        if stopped:
            logger.info("Cancelled generation for node %s", generation.node_id)
            if release:
                await self._write_back(generation, {"is_streaming": False})
            self._notify(generation)

    def _mark_cancelled(self, generation: Generation) -> None:
        if generation.state is GenerationState.STREAMING:
            generation.state = GenerationState.CANCELLED
        self._drop_buffer(generation)

    async def _write_back(self, generation: Generation, update: dict[str, Any]) -> bool:
        """Apply ``update`` to the node's current record; False if it is gone."""
        try:
            await self._store.modify_node(generation.session_id, generation.node_id, **update)
        except (SessionNotFoundError, NodeNotFoundError):
            logger.debug("Node %s was removed during generation", generation.node_id)
            return False
        return True

    def _drop_buffer(self, generation: Generation) -> None:
        if self._generations.get(generation.node_id) is generation:
            self._buffers.pop(generation.node_id, None)

    def _notify(self, generation: Generation, chunk: str = "") -> None:
        update = GenerationUpdate(
            session_id=generation.session_id,
            node_id=generation.node_id,
            state=generation.state,
            chunk=chunk,
            text=generation.text,
        )
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                logger.exception("Generation listener failed for node %s", generation.node_id)

    def _lock(self, node_id: str) -> asyncio.Lock:
        return self._locks.setdefault(node_id, asyncio.Lock())
