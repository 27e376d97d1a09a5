"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from aichat_context import __version__
from aichat_context.backends import SQLiteConversationStore
from aichat_context.cli import main

from conftest import make_message


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "conversations.db"


@pytest.fixture
def seeded(db_path):
    store = SQLiteConversationStore(db_path)
    conv = store.create_conversation("Fix authentication bug")
    store.append_message(conv.id, make_message("user", "Fix the login bug", 0))
    store.append_message(conv.id, make_message("assistant", "Patched the token check.", 1))
    store.append_message(conv.id, make_message("user", "Thanks!", 2))
    store.close()
    return conv.id


def run(db_path, *args):
    return CliRunner().invoke(main, ["--db", str(db_path), *args])


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_list_empty(db_path):
    result = run(db_path, "list")
    assert result.exit_code == 0
    assert "No conversations yet." in result.output


def test_list(db_path, seeded):
    result = run(db_path, "list")
    assert result.exit_code == 0
    assert seeded in result.output
    assert "3 msgs" in result.output
    assert "Fix authentication bug" in result.output


def test_status(db_path, seeded, fixed_tokens):
    fixed_tokens(50_000)
    result = run(db_path, "status", seeded)
    assert result.exit_code == 0
    assert "150,000 / 200,000 (75.0%)" in result.output
    assert "Status:   warning" in result.output
    assert "Recommended trim target: 100,000 tokens" in result.output


def test_status_safe_has_no_recommendation(db_path, seeded, fixed_tokens):
    fixed_tokens(10)
    result = run(db_path, "status", seeded)
    assert "Status:   safe" in result.output
    assert "Recommended trim target" not in result.output


def test_unknown_conversation(db_path):
    result = run(db_path, "status", "missing")
    assert result.exit_code == 1
    assert "No conversation with id missing" in result.output


def test_export_markdown_to_stdout(db_path, seeded):
    result = run(db_path, "export", seeded)
    assert result.exit_code == 0
    assert result.output.startswith("# Fix authentication bug")
    assert "Patched the token check." in result.output


def test_export_json_to_file(db_path, seeded, tmp_path):
    out = tmp_path / "out.json"
    result = run(db_path, "export", seeded, "--format", "json", "-o", str(out), "--no-timestamps")
    assert result.exit_code == 0
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["metadata"]["message_count"] == 3
    assert data["messages"][0]["timestamp"] is None


def test_export_compact_into_directory(db_path, seeded, tmp_path):
    out_dir = tmp_path / "exports"
    out_dir.mkdir()
    result = run(db_path, "export", seeded, "--format", "compact", "-o", str(out_dir))
    assert result.exit_code == 0

    written = list(out_dir.glob("fix-authentication-bug-compact-*.md"))
    assert len(written) == 1
    content = written[0].read_text(encoding="utf-8")
    assert content.endswith("U:Thanks!||CONVERSATION_END")
