"""Shared utilities for tree_chat."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4


def utc_timestamp() -> str:
    """Return current UTC timestamp in ISO format.

    Returns:
        ISO-formatted timestamp string.
    """
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    """Generate a random UUID4 identifier for sessions, nodes and models."""
    return str(uuid4())


def next_timestamp(previous: str | None) -> str:
    """Return a UTC timestamp strictly later than ``previous``.

    Clock resolution can make two quick mutations share a timestamp; in that
    case the previous value is bumped by one microsecond.
    """
    now = datetime.now(UTC)
    if previous:
        last = datetime.fromisoformat(previous)
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        if now <= last:
            now = last + timedelta(microseconds=1)
    return now.isoformat()
