"""Shared test fixtures for aichat-context."""

from datetime import datetime, timedelta, timezone

import pytest

from aichat_context.backends import InMemoryConversationStore, SQLiteConversationStore
from aichat_context.core import Conversation, Message
from aichat_context.server import create_app
from aichat_context.settings import SettingsStore

BASE_TIME = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def make_message(role, content, minutes=0, tokens=None, id=None):
    """Build a message at a fixed offset from BASE_TIME."""
    return Message(
        id=id or f"{role}-{minutes}",
        role=role,
        content=content,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        tokens=tokens,
    )


@pytest.fixture
def sample_messages():
    return [
        make_message("user", "Fix the login bug in auth.ts", 0),
        make_message(
            "assistant",
            "I'll fix the authentication bug. Here's the change:\n\n"
            "```typescript\nconst token = await validateToken(input);\n```",
            1,
        ),
        make_message("user", "Looks good, thanks!", 2),
    ]


@pytest.fixture
def sample_conversation(sample_messages):
    return Conversation(
        id="conv-001",
        title="Fix authentication bug",
        messages=sample_messages,
        created_at=BASE_TIME,
        updated_at=BASE_TIME + timedelta(minutes=2),
    )


@pytest.fixture
def empty_conversation():
    return Conversation(id="conv-empty", title=None, created_at=BASE_TIME, updated_at=BASE_TIME)


@pytest.fixture
def fixed_tokens(monkeypatch):
    """Make every non-empty text count as a fixed number of tokens.

    Returns a setter so tests can pick the per-message count.
    """
    import aichat_context.tokens as tokens_mod

    per_message = {"n": 50}

    def fake_count(text):
        return per_message["n"] if text and text.strip() else 0

    monkeypatch.setattr(tokens_mod, "count_tokens", fake_count)

    def set_count(n):
        per_message["n"] = n

    return set_count


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each store test runs against both backends."""
    if request.param == "memory":
        s = InMemoryConversationStore()
    else:
        s = SQLiteConversationStore(tmp_path / "conversations.db")
    yield s
    s.close()


@pytest.fixture
def settings_store(tmp_path):
    s = SettingsStore(tmp_path / "settings.json")
    s.load()
    return s


@pytest.fixture
def app(tmp_path, settings_store):
    return create_app(store=InMemoryConversationStore(), settings=settings_store)
