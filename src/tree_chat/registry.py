"""Model registry: configured inference endpoints keyed by id."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tree_chat.errors import DuplicateIdError, ModelNotFoundError
from tree_chat.models import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, ModelEndpoint

if TYPE_CHECKING:
    from tree_chat.storage import RecordStore

logger = logging.getLogger(__name__)


class ModelRegistry:
    """In-memory view of configured models, persisted through a record store.

    Models keep their insertion order. The default model is the first one
    unless another was selected explicitly.
    """

    def __init__(self, records: RecordStore) -> None:
        """Initialize an empty registry bound to ``records``."""
        self._records = records
        self._models: dict[str, ModelEndpoint] = {}
        self._default_model_id: str | None = None

    async def load(self) -> None:
        """Hydrate the registry from the record store."""
        models = await self._records.list_models()
        self._models = {model.id: model for model in models}
        if self._default_model_id not in self._models:
            self._default_model_id = None
        logger.info("Loaded %d model endpoints", len(self._models))

    def list_models(self) -> list[ModelEndpoint]:
        """Return every configured model in insertion order."""
        return list(self._models.values())

    def get_model(self, model_id: str) -> ModelEndpoint | None:
        """Get a model by id."""
        return self._models.get(model_id)

    def require_model(self, model_id: str) -> ModelEndpoint:
        """Get a model by id or raise ``ModelNotFoundError``."""
        model = self._models.get(model_id)
        if model is None:
            raise ModelNotFoundError(model_id)
        return model

    @property
    def default_model_id(self) -> str | None:
        """Return the selected default model, falling back to the first one."""
        if self._default_model_id is not None:
            return self._default_model_id
        return next(iter(self._models), None)

    def default_model(self) -> ModelEndpoint | None:
        """Return the default model if any model is configured."""
        model_id = self.default_model_id
        return self._models.get(model_id) if model_id is not None else None

    def set_default_model_id(self, model_id: str) -> None:
        """Select the model used for new roots and parentless children."""
        self.require_model(model_id)
        self._default_model_id = model_id

    async def create_model(self, model: ModelEndpoint) -> ModelEndpoint:
        """Add a new model.

        Raises:
            DuplicateIdError: If a model with the same id exists.
        """
        if model.id in self._models:
            msg = f"Model '{model.id}' already exists"
            raise DuplicateIdError(msg)
        await self._records.put_model(model)
        self._models[model.id] = model
        logger.debug("Created model: %s (%s)", model.id, model.model_name)
        return model

    async def update_model(self, model: ModelEndpoint) -> ModelEndpoint:
        """Replace an existing model record."""
        self.require_model(model.id)
        await self._records.put_model(model)
        self._models[model.id] = model
        return model

    async def delete_model(self, model_id: str) -> None:
        """Remove a model; unknown ids are ignored.

        Nodes referencing the model are left untouched. Their generations fail
        until the node is pointed at another model.
        """
        if model_id not in self._models:
            return
        await self._records.delete_model(model_id)
        del self._models[model_id]
        if self._default_model_id == model_id:
            self._default_model_id = None
        logger.info("Deleted model: %s", model_id)

    async def register(self, model: ModelEndpoint) -> ModelEndpoint:
        """Insert or replace a model, typically one declared in a config file."""
        await self._records.put_model(model)
        self._models[model.id] = model
        logger.debug("Registered model: %s", model.id)
        return model


def _load_toml_file(path: Path) -> dict[str, Any]:
    """Load TOML file, return empty dict if not found."""
    if not path.exists():
        return {}
    with path.open("rb") as file:
        return tomllib.load(file)


def _resolve_api_key(model_id: str, data: dict[str, Any]) -> str:
    if "api_key" in data:
        return str(data["api_key"])
    env_name = data.get("api_key_env")
    if not env_name:
        return ""
    api_key = os.getenv(str(env_name))
    if not api_key:
        logger.warning(
            "Model '%s': %s is not set, requests will be unauthenticated", model_id, env_name
        )
        return ""
    return api_key


def load_models_file(path: str | Path) -> list[ModelEndpoint]:
    """Load model endpoints declared as ``[models.<id>]`` tables in a TOML file.

    Args:
        path: TOML file location. A missing file yields no models.

    Returns:
        Models in declaration order.

    Raises:
        ValueError: If a model lacks ``base_url`` or ``model_name``.
    """
    path = Path(path)
    data = _load_toml_file(path)
    if not data:
        logger.warning("No models found in %s", path)
        return []

    models: list[ModelEndpoint] = []
    for model_id, model_data in data.get("models", {}).items():
        for required in ("base_url", "model_name"):
            if not model_data.get(required):
                msg = f"Missing {required} for model '{model_id}' in {path}"
                raise ValueError(msg)
        models.append(
            ModelEndpoint(
                id=str(model_id),
                name=str(model_data.get("name", model_id)),
                base_url=str(model_data["base_url"]),
                api_key=_resolve_api_key(model_id, model_data),
                model_name=str(model_data["model_name"]),
                default_system_prompt=str(model_data.get("default_system_prompt", "")),
                temperature=float(model_data.get("temperature", DEFAULT_TEMPERATURE)),
                max_tokens=int(model_data.get("max_tokens", DEFAULT_MAX_TOKENS)),
            )
        )

    logger.info("Loaded %d models from %s", len(models), path)
    return models
