"""In-memory conversation store, used by tests and ephemeral sessions."""

import copy
from typing import Optional

from ..core import Conversation, Message
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


class InMemoryConversationStore(ConversationStore):
    """Keeps conversations in a dict. Returned objects are copies."""

    name = "memory"

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}

    def _get(self, conversation_id: str) -> Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise ConversationNotFound(conversation_id) from None

    def list_conversations(self) -> list[ConversationSummary]:
        summaries = [
            ConversationSummary(
                id=c.id,
                title=c.display_title,
                message_count=len(c.messages),
                created_at=c.created_at,
                updated_at=c.updated_at,
            )
            for c in self._conversations.values()
        ]
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    def create_conversation(self, title: Optional[str] = None) -> Conversation:
        conversation = Conversation.new(title)
        self._conversations[conversation.id] = conversation
        return copy.deepcopy(conversation)

    def get_conversation(self, conversation_id: str) -> Conversation:
        return copy.deepcopy(self._get(conversation_id))

    def append_message(self, conversation_id: str, message: Message) -> Conversation:
        conversation = self._get(conversation_id)
        conversation.append(copy.deepcopy(message))
        return copy.deepcopy(conversation)

    def replace_messages(self, conversation_id: str, messages: list[Message]) -> Conversation:
        conversation = self._get(conversation_id)
        conversation.messages = copy.deepcopy(list(messages))
        return copy.deepcopy(conversation)

    def update_title(self, conversation_id: str, title: str) -> Conversation:
        conversation = self._get(conversation_id)
        conversation.title = title
        return copy.deepcopy(conversation)

    def delete_conversation(self, conversation_id: str) -> None:
        self._get(conversation_id)
        del self._conversations[conversation_id]

    def search(self, query: str, limit: int = 50, offset: int = 0) -> SearchResults:
        term = query.strip()
        if len(term) < MIN_QUERY_CHARS:
            return SearchResults(query=term)

        conversations = sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)

        title_hits = [
            SearchResult(
                type="conversation",
                id=c.id,
                conversation_id=c.id,
                conversation_title=c.display_title,
                excerpt=f"Conversation with {len(c.messages)} messages",
                updated_at=c.updated_at,
            )
            for c in conversations
            if find_term(c.display_title, term)
        ]

        message_hits = [
            SearchResult(
                type="message",
                id=m.id,
                conversation_id=c.id,
                conversation_title=c.display_title,
                excerpt=make_excerpt(m.content, term),
                updated_at=c.updated_at,
                message_role=m.role,
                timestamp=m.timestamp,
            )
            for c in conversations
            for m in c.messages
            if find_term(m.content, term)
        ]
        message_hits.sort(key=lambda r: r.timestamp, reverse=True)

        matches = title_hits + message_hits
        return SearchResults(
            query=term,
            results=matches[offset: offset + limit],
            total=len(matches),
            has_more=offset + limit < len(matches),
        )
