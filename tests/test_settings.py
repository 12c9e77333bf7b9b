from __future__ import annotations

from pathlib import Path

import pytest
from tree_chat.layout import LayoutConfig
from tree_chat.settings import load_settings


def test_load_settings_defaults() -> None:
    settings = load_settings()
    assert settings.storage_dir == ".data"
    assert settings.db_path == Path(".data") / "tree_chat.db"
    assert settings.models_file is None
    assert settings.default_temperature == 0.7
    assert settings.default_max_tokens == 2048
    assert settings.request_timeout is None
    assert settings.log_level == "INFO"
    assert settings.layout_config() == LayoutConfig()


def test_load_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TREE_CHAT_STORAGE_DIR", "/tmp/trees")
    monkeypatch.setenv("TREE_CHAT_MODELS_FILE", "models.toml")
    monkeypatch.setenv("TREE_CHAT_DEFAULT_TEMPERATURE", "1.1")
    monkeypatch.setenv("TREE_CHAT_DEFAULT_MAX_TOKENS", "4096")
    monkeypatch.setenv("TREE_CHAT_REQUEST_TIMEOUT", "30")
    monkeypatch.setenv("TREE_CHAT_LOG_LEVEL", "debug")
    monkeypatch.setenv("TREE_CHAT_NODE_WIDTH", "300")
    monkeypatch.setenv("TREE_CHAT_VERTICAL_SPACING", "60")

    settings = load_settings()

    assert settings.db_path == Path("/tmp/trees/tree_chat.db")
    assert settings.models_file == "models.toml"
    assert settings.default_temperature == 1.1
    assert settings.default_max_tokens == 4096
    assert settings.request_timeout == 30.0
    assert settings.log_level == "DEBUG"
    config = settings.layout_config()
    assert config.default_width == 300
    assert config.vertical_spacing == 60
    assert config.horizontal_spacing == 200


def test_invalid_number_names_the_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TREE_CHAT_DEFAULT_MAX_TOKENS", "lots")
    with pytest.raises(ValueError, match="TREE_CHAT_DEFAULT_MAX_TOKENS"):
        load_settings()
