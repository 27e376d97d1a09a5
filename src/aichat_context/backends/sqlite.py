"""SQLite conversation store.

Two tables: conversations and messages, with messages ordered by an explicit
position column. Timestamps are stored as UTC ISO-8601 text so they sort
lexically. Attachments are stored as a JSON column on the message row.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..core import Conversation, FileAttachment, Message, derive_title
from ..config import DEFAULT_TITLE
from ..store import (
    MIN_QUERY_CHARS,
    ConversationNotFound,
    ConversationStore,
    ConversationSummary,
    SearchResult,
    SearchResults,
    find_term,
    make_excerpt,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    tokens INTEGER,
    files TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_messages_conv ON messages(conversation_id, position);
"""


def _to_db_time(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _contains_term(text: str, term: str) -> int:
    return 1 if find_term(text, term) else 0


class SQLiteConversationStore(ConversationStore):
    """Conversation store backed by a single SQLite database file."""

    name = "sqlite"

    def __init__(self, db_path: Path):
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.create_function("contains_term", 2, _contains_term)
        self.conn.executescript(SCHEMA)

    def close(self) -> None:
        self.conn.close()

    # ── Reads ────────────────────────────────────────────────────────

    def list_conversations(self) -> list[ConversationSummary]:
        rows = self.conn.execute(
            """
            SELECT c.id, c.title, c.created_at, c.updated_at,
                   (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count,
                   (SELECT m.content FROM messages m
                     WHERE m.conversation_id = c.id AND m.role = 'user'
                     ORDER BY m.position LIMIT 1) AS first_user_message
            FROM conversations c
            ORDER BY c.updated_at DESC
            """
        ).fetchall()

        return [
            ConversationSummary(
                id=row["id"],
                title=self._display_title(row["title"], row["first_user_message"]),
                message_count=row["message_count"],
                created_at=_from_db_time(row["created_at"]),
                updated_at=_from_db_time(row["updated_at"]),
            )
            for row in rows
        ]

    def get_conversation(self, conversation_id: str) -> Conversation:
        row = self.conn.execute(
            "SELECT id, title, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        if row is None:
            raise ConversationNotFound(conversation_id)

        message_rows = self.conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY position",
            (conversation_id,),
        ).fetchall()

        return Conversation(
            id=row["id"],
            title=row["title"],
            messages=[self._row_to_message(r) for r in message_rows],
            created_at=_from_db_time(row["created_at"]),
            updated_at=_from_db_time(row["updated_at"]),
        )

    def search(self, query: str, limit: int = 50, offset: int = 0) -> SearchResults:
        term = query.strip()
        if len(term) < MIN_QUERY_CHARS:
            return SearchResults(query=term)

        summaries = self.list_conversations()
        titles = {s.id: s for s in summaries}

        title_hits = [
            SearchResult(
                type="conversation",
                id=s.id,
                conversation_id=s.id,
                conversation_title=s.title,
                excerpt=f"Conversation with {s.message_count} messages",
                updated_at=s.updated_at,
            )
            for s in summaries
            if find_term(s.title, term)
        ]

        message_count = self.conn.execute(
            "SELECT COUNT(*) FROM messages WHERE contains_term(content, ?)",
            (term,),
        ).fetchone()[0]

        # Title hits fill the head of the combined list; messages follow
        page_titles = title_hits[offset: offset + limit]
        message_offset = max(0, offset - len(title_hits))
        message_limit = limit - len(page_titles)

        rows = []
        if message_limit > 0:
            rows = self.conn.execute(
                """
                SELECT * FROM messages
                WHERE contains_term(content, ?)
                ORDER BY timestamp DESC, id
                LIMIT ? OFFSET ?
                """,
                (term, message_limit, message_offset),
            ).fetchall()

        message_hits = []
        for row in rows:
            summary = titles[row["conversation_id"]]
            message_hits.append(SearchResult(
                type="message",
                id=row["id"],
                conversation_id=summary.id,
                conversation_title=summary.title,
                excerpt=make_excerpt(row["content"], term),
                updated_at=summary.updated_at,
                message_role=row["role"],
                timestamp=_from_db_time(row["timestamp"]),
            ))

        total = len(title_hits) + message_count
        return SearchResults(
            query=term,
            results=page_titles + message_hits,
            total=total,
            has_more=offset + limit < total,
        )

    # ── Writes ───────────────────────────────────────────────────────

    def create_conversation(self, title: Optional[str] = None) -> Conversation:
        conversation = Conversation.new(title)
        with self.conn:
            self.conn.execute(
                "INSERT INTO conversations (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (
                    conversation.id,
                    conversation.title,
                    _to_db_time(conversation.created_at),
                    _to_db_time(conversation.updated_at),
                ),
            )
        logger.debug("Created conversation %s", conversation.id)
        return conversation

    def append_message(self, conversation_id: str, message: Message) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        conversation.append(message)
        with self.conn:
            self._insert_message(conversation_id, len(conversation.messages) - 1, message)
            self.conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (_to_db_time(conversation.updated_at), conversation_id),
            )
        return conversation

    def replace_messages(self, conversation_id: str, messages: list[Message]) -> Conversation:
        self.get_conversation(conversation_id)
        with self.conn:
            self.conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            for position, message in enumerate(messages):
                self._insert_message(conversation_id, position, message)
        return self.get_conversation(conversation_id)

    def update_title(self, conversation_id: str, title: str) -> Conversation:
        with self.conn:
            cur = self.conn.execute(
                "UPDATE conversations SET title = ? WHERE id = ?", (title, conversation_id)
            )
        if cur.rowcount == 0:
            raise ConversationNotFound(conversation_id)
        return self.get_conversation(conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        with self.conn:
            cur = self.conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        if cur.rowcount == 0:
            raise ConversationNotFound(conversation_id)

    # ── Private helpers ──────────────────────────────────────────────

    @staticmethod
    def _display_title(title: Optional[str], first_user_message: Optional[str]) -> str:
        if title:
            return title
        if first_user_message:
            return derive_title(first_user_message)
        return DEFAULT_TITLE

    def _insert_message(self, conversation_id: str, position: int, message: Message) -> None:
        files = [
            {
                "name": f.name,
                "mime_type": f.mime_type,
                "size": f.size,
                "kind": f.kind,
                "content": f.content,
            }
            for f in message.files
        ]
        self.conn.execute(
            """
            INSERT INTO messages (id, conversation_id, position, role, content, timestamp, tokens, files)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                conversation_id,
                position,
                message.role,
                message.content,
                _to_db_time(message.timestamp),
                message.tokens,
                json.dumps(files),
            ),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        try:
            files = [FileAttachment(**f) for f in json.loads(row["files"])]
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Bad attachment data on message %s: %s", row["id"], e)
            files = []

        return Message(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            timestamp=_from_db_time(row["timestamp"]),
            tokens=row["tokens"],
            files=files,
        )
