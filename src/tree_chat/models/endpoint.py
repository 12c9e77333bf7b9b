"""Model endpoint configuration records."""

from __future__ import annotations

from pydantic import Field

from tree_chat.models.base import RecordModel
from tree_chat.models.conversation import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE


class ModelEndpoint(RecordModel):
    """Configuration for one reachable OpenAI-compatible inference endpoint."""

    id: str
    name: str
    base_url: str = Field(alias="baseUrl")
    api_key: str = Field(default="", alias="apiKey")
    model_name: str = Field(alias="modelName")
    default_system_prompt: str = Field(default="", alias="defaultSystemPrompt")
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0, alias="maxTokens")
