"""Tests for the conversation store backends."""

from datetime import timedelta

import pytest

from aichat_context.backends import InMemoryConversationStore, SQLiteConversationStore, open_store
from aichat_context.core import FileAttachment
from aichat_context.store import ConversationNotFound, make_excerpt

from conftest import BASE_TIME, make_message


class TestConversations:
    def test_create_and_get(self, store):
        created = store.create_conversation("Planning")
        loaded = store.get_conversation(created.id)
        assert loaded.id == created.id
        assert loaded.title == "Planning"
        assert loaded.messages == []

    def test_missing_conversation(self, store):
        with pytest.raises(ConversationNotFound):
            store.get_conversation("nope")
        with pytest.raises(ConversationNotFound):
            store.append_message("nope", make_message("user", "hi"))
        with pytest.raises(ConversationNotFound):
            store.delete_conversation("nope")

    def test_append_keeps_order_and_advances_updated(self, store):
        conv = store.create_conversation()
        later = conv.updated_at + timedelta(hours=1)
        first = make_message("user", "first", id="a")
        first.timestamp = later
        second = make_message("assistant", "second", id="b")
        second.timestamp = later + timedelta(minutes=1)

        store.append_message(conv.id, first)
        updated = store.append_message(conv.id, second)

        loaded = store.get_conversation(conv.id)
        assert [m.id for m in loaded.messages] == ["a", "b"]
        assert loaded.updated_at == second.timestamp
        assert updated.updated_at == second.timestamp

    def test_title_derived_from_first_user_message(self, store):
        conv = store.create_conversation()
        store.append_message(conv.id, make_message("user", "x" * 80, id="long"))
        summary = store.list_conversations()[0]
        assert summary.title == "x" * 50 + "..."
        assert store.get_conversation(conv.id).display_title == "x" * 50 + "..."

    def test_update_title(self, store):
        conv = store.create_conversation()
        store.update_title(conv.id, "Renamed")
        assert store.get_conversation(conv.id).title == "Renamed"

    def test_list_newest_first(self, store):
        old = store.create_conversation("old")
        new = store.create_conversation("new")
        msg = make_message("user", "bump")
        msg.timestamp = old.updated_at + timedelta(days=1)
        store.append_message(old.id, msg)

        summaries = store.list_conversations()
        assert [s.id for s in summaries] == [old.id, new.id]
        assert summaries[0].message_count == 1

    def test_replace_messages(self, store):
        conv = store.create_conversation()
        for i in range(4):
            store.append_message(conv.id, make_message("user", f"m{i}", i, id=f"m{i}"))

        kept = store.get_conversation(conv.id).messages[2:]
        store.replace_messages(conv.id, kept)
        assert [m.id for m in store.get_conversation(conv.id).messages] == ["m2", "m3"]

    def test_delete(self, store):
        conv = store.create_conversation()
        store.append_message(conv.id, make_message("user", "bye"))
        store.delete_conversation(conv.id)
        assert store.list_conversations() == []

    def test_attachments_and_cached_tokens_kept(self, store):
        conv = store.create_conversation()
        msg = make_message("user", "see file", tokens=3)
        msg.files.append(FileAttachment(name="notes.txt", mime_type="text/plain", size=5, kind="text", content="hello"))
        store.append_message(conv.id, msg)

        loaded = store.get_conversation(conv.id).messages[0]
        assert loaded.tokens == 3
        assert loaded.files[0].name == "notes.txt"
        assert loaded.files[0].content == "hello"

    def test_returned_conversation_is_detached(self, store):
        conv = store.create_conversation()
        store.append_message(conv.id, make_message("user", "original"))
        loaded = store.get_conversation(conv.id)
        loaded.messages[0].content = "changed"
        assert store.get_conversation(conv.id).messages[0].content == "original"


class TestSearch:
    @pytest.fixture
    def populated(self, store):
        auth = store.create_conversation("Auth refactor")
        store.append_message(auth.id, make_message("user", "How should tokens expire?", 0, id="q1"))
        store.append_message(auth.id, make_message("assistant", "Expire refresh tokens after a week.", 1, id="a1"))
        other = store.create_conversation("Dinner ideas")
        store.append_message(other.id, make_message("user", "Anything with TOKENS of appreciation?", 5, id="q2"))
        return store, auth, other

    def test_short_query_returns_nothing(self, populated):
        store, _, _ = populated
        found = store.search(" t ")
        assert found.results == []
        assert found.total == 0

    def test_title_matches_first_then_messages_newest_first(self, populated):
        store, auth, other = populated
        found = store.search("Refactor")
        assert found.results[0].type == "conversation"
        assert found.results[0].conversation_id == auth.id

        found = store.search("tokens")
        assert [r.id for r in found.results] == ["q2", "a1", "q1"]
        assert found.total == 3
        assert found.has_more is False
        assert found.results[0].message_role == "user"

    def test_pagination(self, populated):
        store, _, _ = populated
        found = store.search("tokens", limit=2)
        assert len(found.results) == 2
        assert found.has_more is True

    def test_like_wildcards_are_literal(self, populated):
        store, _, _ = populated
        assert store.search("%_").results == []

    def test_paging_walks_every_match_once(self, store):
        for i in range(3):
            conv = store.create_conversation(f"Cache notes {i}")
            for j in range(3):
                store.append_message(conv.id, make_message("user", f"cache question {i}-{j}", 10 * i + j, id=f"m{i}-{j}"))

        seen, offset = [], 0
        while True:
            page = store.search("cache", limit=5, offset=offset)
            assert len(page.results) <= 5
            seen.extend((r.type, r.id) for r in page.results)
            if not page.has_more:
                break
            offset += 5

        assert page.total == 12
        assert len(set(seen)) == len(seen) == 12
        assert [kind for kind, _ in seen[:3]] == ["conversation"] * 3
        assert {rid for kind, rid in seen if kind == "message"} == {f"m{i}-{j}" for i in range(3) for j in range(3)}

    def test_non_ascii_case_insensitive(self, store):
        conv = store.create_conversation("Überblick")
        store.append_message(conv.id, make_message("user", "Der ÜBERBLICK über alle Dienste", id="de"))

        found = store.search("überblick")
        assert [r.type for r in found.results] == ["conversation", "message"]
        assert found.results[1].excerpt == "Der ÜBERBLICK über alle Dienste"


class TestExcerpt:
    def test_short_content_unmarked(self):
        assert make_excerpt("find me here", "me") == "find me here"

    def test_long_content_marked_on_both_sides(self):
        content = "a" * 100 + "needle" + "b" * 100
        excerpt = make_excerpt(content, "needle")
        assert excerpt == "..." + "a" * 50 + "needle" + "b" * 50 + "..."

    def test_window_stays_on_match_when_case_folding_changes_length(self):
        content = "\u0130" * 80 + "needle" + "b" * 80
        excerpt = make_excerpt(content, "NEEDLE")
        assert excerpt == "..." + "\u0130" * 50 + "needle" + "b" * 50 + "..."


def test_sqlite_persists_across_reopen(tmp_path):
    path = tmp_path / "conv.db"
    store = SQLiteConversationStore(path)
    conv = store.create_conversation("Persistent")
    store.append_message(conv.id, make_message("user", "remember me"))
    store.close()

    reopened = SQLiteConversationStore(path)
    loaded = reopened.get_conversation(conv.id)
    assert loaded.messages[0].content == "remember me"
    assert loaded.messages[0].timestamp == BASE_TIME
    reopened.close()


def test_open_store(tmp_path):
    assert isinstance(open_store(":memory:"), InMemoryConversationStore)
    store = open_store(tmp_path / "x.db")
    assert isinstance(store, SQLiteConversationStore)
    store.close()
