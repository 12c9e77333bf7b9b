"""Export a stored conversation tree as a FreeMind mind map.

Usage:
    tree-chat-export SESSION_ID
    tree-chat-export SESSION_ID --output chat.mm
    tree-chat-export --list --storage-dir .data
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from tree_chat.errors import PersistenceError, SessionNotFoundError
from tree_chat.export import write_mindmap
from tree_chat.logging_utils import configure_logging
from tree_chat.settings import load_settings
from tree_chat.storage import SqliteRecordStore


async def _list_sessions(records: SqliteRecordStore) -> int:
    sessions = await records.list_sessions()
    if not sessions:
        print("No sessions stored")
        return 0
    for session in sessions:
        print(f"{session.id}\t{session.title}\t{len(session.nodes)} nodes")
    return 0


async def _export(records: SqliteRecordStore, session_id: str, output: Path | None) -> int:
    session = await records.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    target = write_mindmap(session, output)
    print(f"Exported {len(session.nodes)} nodes to {target}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Export a conversation tree as a FreeMind (.mm) mind map"
    )
    parser.add_argument("session_id", nargs="?", help="Id of the session to export")
    parser.add_argument(
        "--storage-dir",
        type=Path,
        help="Directory holding tree_chat.db (default: TREE_CHAT_STORAGE_DIR or .data)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Output file (default: derived from the session title)",
    )
    parser.add_argument("--list", action="store_true", help="List stored sessions and exit")

    args = parser.parse_args(argv)
    if not args.list and not args.session_id:
        parser.error("session_id is required unless --list is given")

    settings = load_settings()
    configure_logging(settings.log_level)
    storage_dir = args.storage_dir or Path(settings.storage_dir)

    try:
        records = SqliteRecordStore(storage_dir / "tree_chat.db")
        if args.list:
            return asyncio.run(_list_sessions(records))
        return asyncio.run(_export(records, args.session_id, args.output))
    except (SessionNotFoundError, PersistenceError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
