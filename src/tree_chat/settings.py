"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from tree_chat.layout import LayoutConfig
from tree_chat.models import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE


class Settings(BaseModel, frozen=True):
    """Runtime configuration loaded from environment variables."""

    storage_dir: str = ".data"
    models_file: str | None = None
    default_temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    default_max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    request_timeout: float | None = None
    log_level: str = "INFO"
    # Layout defaults used until the canvas reports measured sizes
    node_width: float = 350.0
    node_height: float = 250.0
    horizontal_spacing: float = 200.0
    vertical_spacing: float = 100.0

    @property
    def db_path(self) -> Path:
        """Return the SQLite file backing sessions and models."""
        return Path(self.storage_dir) / "tree_chat.db"

    def layout_config(self) -> LayoutConfig:
        """Build the layout configuration from these settings."""
        return LayoutConfig(
            default_width=self.node_width,
            default_height=self.node_height,
            horizontal_spacing=self.horizontal_spacing,
            vertical_spacing=self.vertical_spacing,
        )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ValueError(msg) from exc


def load_settings() -> Settings:
    """Load settings from environment variables with defaults."""
    load_dotenv()

    timeout_raw = os.getenv("TREE_CHAT_REQUEST_TIMEOUT")
    request_timeout = (
        _env_float("TREE_CHAT_REQUEST_TIMEOUT", 0.0)
        if timeout_raw and timeout_raw.strip()
        else None
    )

    return Settings(
        storage_dir=os.getenv("TREE_CHAT_STORAGE_DIR", ".data"),
        models_file=os.getenv("TREE_CHAT_MODELS_FILE") or None,
        default_temperature=_env_float("TREE_CHAT_DEFAULT_TEMPERATURE", DEFAULT_TEMPERATURE),
        default_max_tokens=_env_int("TREE_CHAT_DEFAULT_MAX_TOKENS", DEFAULT_MAX_TOKENS),
        request_timeout=request_timeout,
        log_level=os.getenv("TREE_CHAT_LOG_LEVEL", "INFO").upper(),
        node_width=_env_float("TREE_CHAT_NODE_WIDTH", 350.0),
        node_height=_env_float("TREE_CHAT_NODE_HEIGHT", 250.0),
        horizontal_spacing=_env_float("TREE_CHAT_HORIZONTAL_SPACING", 200.0),
        vertical_spacing=_env_float("TREE_CHAT_VERTICAL_SPACING", 100.0),
    )
