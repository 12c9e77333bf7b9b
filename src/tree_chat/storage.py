"""Record stores backing sessions and model endpoints.

Every store has whole-record semantics: a session is written and read as one
JSON document, nodes included. ``SqliteRecordStore`` keeps one row per record
with the camelCase payload in a TEXT column.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from tree_chat.errors import PersistenceError
from tree_chat.models import ModelEndpoint, Session

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Persistence collaborator for sessions and model endpoints."""

    async def put_session(self, session: Session) -> None:
        """Insert or replace a session record."""
        ...

    async def get_session(self, session_id: str) -> Session | None:
        """Return a session record if present."""
        ...

    async def delete_session(self, session_id: str) -> None:
        """Delete a session record; missing ids are ignored."""
        ...

    async def list_sessions(self) -> list[Session]:
        """Return every stored session."""
        ...

    async def put_model(self, model: ModelEndpoint) -> None:
        """Insert or replace a model record."""
        ...

    async def get_model(self, model_id: str) -> ModelEndpoint | None:
        """Return a model record if present."""
        ...

    async def delete_model(self, model_id: str) -> None:
        """Delete a model record; missing ids are ignored."""
        ...

    async def list_models(self) -> list[ModelEndpoint]:
        """Return every stored model."""
        ...


class InMemoryRecordStore:
    """Process-local record store, used for ephemeral workspaces and tests."""

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}
        self._models: dict[str, dict[str, Any]] = {}

    async def put_session(self, session: Session) -> None:
        """Insert or replace a session record."""
        self._sessions[session.id] = session.to_record()

    async def get_session(self, session_id: str) -> Session | None:
        """Return a session record if present."""
        raw = self._sessions.get(session_id)
        return Session.model_validate(raw) if raw is not None else None

    async def delete_session(self, session_id: str) -> None:
        """Delete a session record."""
        self._sessions.pop(session_id, None)

    async def list_sessions(self) -> list[Session]:
        """Return every stored session."""
        return [Session.model_validate(raw) for raw in self._sessions.values()]

    async def put_model(self, model: ModelEndpoint) -> None:
        """Insert or replace a model record."""
        self._models[model.id] = model.to_record()

    async def get_model(self, model_id: str) -> ModelEndpoint | None:
        """Return a model record if present."""
        raw = self._models.get(model_id)
        return ModelEndpoint.model_validate(raw) if raw is not None else None

    async def delete_model(self, model_id: str) -> None:
        """Delete a model record."""
        self._models.pop(model_id, None)

    async def list_models(self) -> list[ModelEndpoint]:
        """Return every stored model."""
        return [ModelEndpoint.model_validate(raw) for raw in self._models.values()]


class SqliteRecordStore:
    """SQLite-backed record store for sessions and models."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize storage and ensure tables exist."""
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()
        except (sqlite3.Error, OSError) as exc:
            msg = f"Failed to open record store at {self._db_path}: {exc}"
            raise PersistenceError(msg) from exc

    @property
    def path(self) -> Path:
        """Return the backing database path."""
        return self._db_path

    async def put_session(self, session: Session) -> None:
        """Insert or replace a session record."""
        self._execute(
            """INSERT INTO sessions (id, title, created_at, updated_at, payload)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   title = excluded.title,
                   updated_at = excluded.updated_at,
                   payload = excluded.payload""",
            (
                session.id,
                session.title,
                session.created_at,
                session.updated_at,
                json.dumps(session.to_record(), ensure_ascii=True),
            ),
        )

    async def get_session(self, session_id: str) -> Session | None:
        """Return a session record if present."""
        rows = self._fetch_all("SELECT payload FROM sessions WHERE id = ?", (session_id,))
        if not rows:
            return None
        return Session.model_validate(json.loads(rows[0][0]))

    async def delete_session(self, session_id: str) -> None:
        """Delete a session record."""
        self._execute("DELETE FROM sessions WHERE id = ?", (session_id,))

    async def list_sessions(self) -> list[Session]:
        """Return sessions ordered by most recent update."""
        rows = self._fetch_all("SELECT payload FROM sessions ORDER BY updated_at DESC")
        return [Session.model_validate(json.loads(row[0])) for row in rows]

    async def put_model(self, model: ModelEndpoint) -> None:
        """Insert or replace a model record."""
        self._execute(
            """INSERT INTO models (id, name, payload) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET name = excluded.name, payload = excluded.payload""",
            (model.id, model.name, json.dumps(model.to_record(), ensure_ascii=True)),
        )

    async def get_model(self, model_id: str) -> ModelEndpoint | None:
        """Return a model record if present."""
        rows = self._fetch_all("SELECT payload FROM models WHERE id = ?", (model_id,))
        if not rows:
            return None
        return ModelEndpoint.model_validate(json.loads(rows[0][0]))

    async def delete_model(self, model_id: str) -> None:
        """Delete a model record."""
        self._execute("DELETE FROM models WHERE id = ?", (model_id,))

    async def list_models(self) -> list[ModelEndpoint]:
        """Return models in insertion order."""
        rows = self._fetch_all("SELECT payload FROM models ORDER BY rowid ASC")
        return [ModelEndpoint.model_validate(json.loads(row[0])) for row in rows]

    def _init_db(self) -> None:
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS models (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )

    def _fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        try:
            with sqlite3.connect(self._db_path) as conn:
                cursor = conn.execute(query, params)
                return cursor.fetchall()
        except sqlite3.Error as exc:
            logger.exception("Record store read failed")
            msg = f"Record store read failed: {exc}"
            raise PersistenceError(msg) from exc

    def _execute(self, query: str, params: tuple[Any, ...]) -> None:
        try:
            with sqlite3.connect(self._db_path) as conn:
                conn.execute(query, params)
                conn.commit()
        except sqlite3.Error as exc:
            logger.exception("Record store write failed")
            msg = f"Record store write failed: {exc}"
            raise PersistenceError(msg) from exc
