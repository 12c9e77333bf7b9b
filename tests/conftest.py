from __future__ import annotations

import os

import pytest

from factories import make_model, make_node, make_session


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("TREE_CHAT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def model():
    """Default model endpoint used by most tests."""
    return make_model()


@pytest.fixture
def session():
    """Session S -> n1 -> n2 with a sibling branch n3 under S."""
    return make_session(
        [
            make_node("S", None, kind="system", user="You are helpful."),
            make_node("n1", "S", user="u1", assistant="a1"),
            make_node("n2", "n1", user="u2"),
            make_node("n3", "S", user="other branch"),
        ]
    )
