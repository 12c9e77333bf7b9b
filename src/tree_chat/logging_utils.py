"""Logging helpers that tag records with the node being generated."""

from __future__ import annotations

import logging
from contextvars import ContextVar

_generation_node_ctx: ContextVar[str | None] = ContextVar("generation_node_id", default=None)

LOG_FORMAT = "%(name)s - %(levelname)s - %(node_id)s - %(message)s"


def get_generation_node_id() -> str | None:
    """Return the node id of the generation running in the current task."""
    return _generation_node_ctx.get()


def set_generation_node_id(node_id: str | None) -> None:
    """Bind a node id to the current task's context."""
    _generation_node_ctx.set(node_id)


class GenerationContextFilter(logging.Filter):
    """Attach the current generation's node id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject node_id into the log record."""
        record.node_id = get_generation_node_id() or "-"
        return True


def configure_logging(level: str | int = logging.INFO) -> logging.Logger:
    """Install a stream handler on the ``tree_chat`` logger once.

    Args:
        level: Level name or number applied to the package logger.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("tree_chat")
    logger.setLevel(level)
    installed = any(
        isinstance(flt, GenerationContextFilter)
        for handler in logger.handlers
        for flt in handler.filters
    )
    if not installed:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(GenerationContextFilter())
        logger.addHandler(handler)
    return logger
