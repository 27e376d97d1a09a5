"""Conversation store backends and a helper to open the configured one."""

from pathlib import Path
from typing import Optional

from ..config import get_db_path
from ..store import ConversationStore
from .memory import InMemoryConversationStore
from .sqlite import SQLiteConversationStore

__all__ = ["InMemoryConversationStore", "SQLiteConversationStore", "open_store"]


def open_store(db_path: Optional[Path] = None) -> ConversationStore:
    """Open the SQLite store at db_path, or the configured default location.

    ":memory:" gives a store that lives only as long as the process.
    """
    if db_path is not None and str(db_path) == ":memory:":
        return InMemoryConversationStore()
    return SQLiteConversationStore(db_path or get_db_path())
