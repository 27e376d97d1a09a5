"""Abstract base class for conversation storage backends."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from .core import Conversation, Message, Role

MIN_QUERY_CHARS = 2
EXCERPT_CONTEXT_CHARS = 50


class ConversationNotFound(KeyError):
    """No conversation with the requested id."""


@dataclass
class ConversationSummary:
    """A conversation listing entry without its messages."""

    id: str
    title: str
    message_count: int
    created_at: datetime
    updated_at: datetime


@dataclass
class SearchResult:
    type: Literal["conversation", "message"]
    id: str
    conversation_id: str
    conversation_title: str
    excerpt: str
    updated_at: datetime
    message_role: Optional[Role] = None
    timestamp: Optional[datetime] = None


@dataclass
class SearchResults:
    query: str
    results: list[SearchResult] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


def find_term(text: str, term: str) -> Optional[re.Match]:
    """Case-insensitive literal match. Every backend matches through this."""
    return re.search(re.escape(term), text, re.IGNORECASE)


def make_excerpt(content: str, term: str) -> str:
    """Cut out the match with some surrounding context, marking elided ends."""
    match = find_term(content, term)
    match_start, match_end = (match.start(), match.end()) if match else (0, 0)
    start = max(0, match_start - EXCERPT_CONTEXT_CHARS)
    end = min(len(content), match_end + EXCERPT_CONTEXT_CHARS)

    excerpt = content[start:end]
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(content):
        excerpt = excerpt + "..."
    return excerpt


class ConversationStore(ABC):
    """Persistence for conversations and their messages.

    The context and export functions never talk to a store; callers load a
    Conversation, run the pure functions, and write results back.
    """

    name: str

    @abstractmethod
    def list_conversations(self) -> list[ConversationSummary]:
        """Return all conversations, most recently updated first."""
        ...

    @abstractmethod
    def create_conversation(self, title: Optional[str] = None) -> Conversation:
        ...

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Conversation:
        """Return a conversation with its messages. Raises ConversationNotFound."""
        ...

    @abstractmethod
    def append_message(self, conversation_id: str, message: Message) -> Conversation:
        """Add a message and advance the conversation's updated time."""
        ...

    @abstractmethod
    def replace_messages(self, conversation_id: str, messages: list[Message]) -> Conversation:
        """Overwrite the message list, e.g. with a trim result."""
        ...

    @abstractmethod
    def update_title(self, conversation_id: str, title: str) -> Conversation:
        ...

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> None:
        ...

    @abstractmethod
    def search(self, query: str, limit: int = 50, offset: int = 0) -> SearchResults:
        """Case-insensitive search over titles and message content.

        Title matches come first, then message matches, newest first.
        Queries shorter than two characters return nothing. offset and limit
        page through the combined list, title matches before message matches.
        """
        ...

    def close(self) -> None:
        pass
