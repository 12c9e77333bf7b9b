from __future__ import annotations

import logging
from pathlib import Path

import pytest
from tree_chat.errors import DuplicateIdError, ModelNotFoundError
from tree_chat.registry import ModelRegistry, load_models_file
from tree_chat.storage import InMemoryRecordStore

from factories import make_model

MODELS_TOML = """
[models.local]
name = "Local Llama"
base_url = "http://localhost:11434/v1"
model_name = "llama3"
default_system_prompt = "You are a local assistant."

[models.hosted]
base_url = "https://api.example.com/v1"
model_name = "gpt-test"
api_key_env = "HOSTED_API_KEY"
temperature = 0.2
max_tokens = 512
"""


class TestModelRegistry:
    """Tests for ModelRegistry."""

    @pytest.fixture
    def records(self) -> InMemoryRecordStore:
        return InMemoryRecordStore()

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, records: InMemoryRecordStore) -> None:
        registry = ModelRegistry(records)
        await registry.create_model(make_model("m1"))
        await registry.create_model(make_model("m2"))

        assert [m.id for m in registry.list_models()] == ["m1", "m2"]
        assert registry.get_model("m2").model_name == "m2-remote"
        assert registry.get_model("nope") is None
        with pytest.raises(ModelNotFoundError, match="'nope' is not configured"):
            registry.require_model("nope")

    @pytest.mark.asyncio
    async def test_duplicate_create_rejected(self, records: InMemoryRecordStore) -> None:
        registry = ModelRegistry(records)
        await registry.create_model(make_model("m1"))
        with pytest.raises(DuplicateIdError):
            await registry.create_model(make_model("m1"))

    @pytest.mark.asyncio
    async def test_default_model_follows_first_model(self, records: InMemoryRecordStore) -> None:
        registry = ModelRegistry(records)
        assert registry.default_model_id is None
        assert registry.default_model() is None

        await registry.create_model(make_model("m1"))
        await registry.create_model(make_model("m2"))
        assert registry.default_model_id == "m1"

        registry.set_default_model_id("m2")
        assert registry.default_model_id == "m2"

        await registry.delete_model("m2")
        assert registry.default_model_id == "m1"

    @pytest.mark.asyncio
    async def test_set_default_requires_known_model(self, records: InMemoryRecordStore) -> None:
        registry = ModelRegistry(records)
        with pytest.raises(ModelNotFoundError):
            registry.set_default_model_id("ghost")

    @pytest.mark.asyncio
    async def test_update_and_delete(self, records: InMemoryRecordStore) -> None:
        registry = ModelRegistry(records)
        await registry.create_model(make_model("m1"))
        await registry.update_model(make_model("m1", name="Renamed"))
        assert registry.get_model("m1").name == "Renamed"
        assert (await records.get_model("m1")).name == "Renamed"

        with pytest.raises(ModelNotFoundError):
            await registry.update_model(make_model("ghost"))

        await registry.delete_model("m1")
        await registry.delete_model("m1")
        assert registry.list_models() == []
        assert await records.get_model("m1") is None

    @pytest.mark.asyncio
    async def test_load_from_records(self, records: InMemoryRecordStore) -> None:
        await records.put_model(make_model("stored"))
        registry = ModelRegistry(records)
        await registry.load()
        assert registry.default_model_id == "stored"

    @pytest.mark.asyncio
    async def test_register_upserts(self, records: InMemoryRecordStore) -> None:
        registry = ModelRegistry(records)
        await registry.register(make_model("m1"))
        await registry.register(make_model("m1", model_name="replaced"))
        assert registry.require_model("m1").model_name == "replaced"
        assert len(await records.list_models()) == 1


def test_load_models_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOSTED_API_KEY", "sk-hosted")
    path = tmp_path / "models.toml"
    path.write_text(MODELS_TOML, encoding="utf-8")

    local, hosted = load_models_file(path)

    assert local.id == "local"
    assert local.name == "Local Llama"
    assert local.api_key == ""
    assert local.temperature == 0.7
    assert local.max_tokens == 2048
    assert hosted.name == "hosted"
    assert hosted.api_key == "sk-hosted"
    assert hosted.temperature == 0.2
    assert hosted.max_tokens == 512


def test_load_models_file_missing_env_key(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "models.toml"
    path.write_text(MODELS_TOML, encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="tree_chat.registry"):
        _, hosted = load_models_file(path)
    assert hosted.api_key == ""
    assert "HOSTED_API_KEY is not set" in caplog.text


def test_load_models_file_requires_base_url(tmp_path: Path) -> None:
    path = tmp_path / "models.toml"
    path.write_text('[models.broken]\nmodel_name = "x"\n', encoding="utf-8")
    with pytest.raises(ValueError, match="base_url"):
        load_models_file(path)


def test_load_models_file_missing_file(tmp_path: Path) -> None:
    assert load_models_file(tmp_path / "absent.toml") == []
