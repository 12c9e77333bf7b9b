"""Model transport: streaming chat completions over HTTP."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from tree_chat.errors import GenerationCancelled, GenerationError

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncIterator

    from tree_chat.context import ChatMessage

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
CANCELLED = "Generation cancelled"


@dataclass(frozen=True)
class ChatRequest:
    """One outbound generation request."""

    base_url: str
    api_key: str
    model_name: str
    messages: list[ChatMessage]
    temperature: float
    max_tokens: int
    cancel_event: asyncio.Event | None = field(default=None, compare=False)

    @property
    def cancelled(self) -> bool:
        """Return True once the cancellation signal has fired."""
        return self.cancel_event is not None and self.cancel_event.is_set()

    def to_payload(self) -> dict[str, Any]:
        """Build the chat completions request body."""
        return {
            "model": self.model_name,
            "messages": [message.to_dict() for message in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }


class ChatTransport(Protocol):
    """Streams text chunks for a chat request."""

    def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """Yield response text chunks in arrival order."""
        ...


class OpenAICompatibleTransport:
    """Chat transport for any endpoint speaking the OpenAI streaming protocol."""

    def __init__(
        self, client: httpx.AsyncClient | None = None, *, timeout: float | None = None
    ) -> None:
        """Initialize the HTTP client."""
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """POST to ``{base_url}/chat/completions`` and yield content deltas.

        Raises:
            GenerationError: On a non-2xx status or a network failure.
            GenerationCancelled: If the request's cancellation signal fires.
        """
        url = f"{request.base_url.rstrip('/')}/chat/completions"
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if request.api_key:
            headers["Authorization"] = f"Bearer {request.api_key}"

        try:
            async with self._client.stream(
                "POST", url, json=request.to_payload(), headers=headers
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    msg = f"API request failed: {response.status_code} {body}".rstrip()
                    raise GenerationError(msg)
                async for line in response.aiter_lines():
                    if request.cancelled:
                        raise GenerationCancelled(CANCELLED)
                    data = _sse_data(line)
                    if data is None:
                        continue
                    if data == DONE_SENTINEL:
                        return
                    content = _parse_chunk(data)
                    if content:
                        yield content
        except httpx.HTTPError as exc:
            msg = f"API request failed: {exc}"
            raise GenerationError(msg) from exc


def _sse_data(line: str) -> str | None:
    """Return the payload of an SSE ``data:`` line, or None for other lines."""
    if not line.startswith("data:"):
        return None
    data = line.removeprefix("data:").strip()
    return data or None


def _parse_chunk(data: str) -> str:
    """Extract the text delta from one streamed JSON payload."""
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed stream payload: %.200s", data)
        return ""
    if not isinstance(parsed, dict):
        return ""
    choices = parsed.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        delta = choice.get("delta")
        if isinstance(delta, dict) and delta.get("content"):
            return str(delta["content"])
        if choice.get("text"):
            return str(choice["text"])
    output = parsed.get("output")
    return str(output) if output else ""
