"""Tests for path resolution and the model table."""

from pathlib import Path

from aichat_context.config import DEFAULT_MODEL, MODELS, get_data_dir, get_db_path, get_settings_path


def test_defaults_under_home(monkeypatch, tmp_path):
    for var in ("AICHAT_DATA_DIR", "AICHAT_DB_PATH", "AICHAT_SETTINGS_PATH"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(Path, "home", lambda: tmp_path)

    assert get_data_dir() == tmp_path / ".aichat-context"
    assert get_db_path() == tmp_path / ".aichat-context" / "conversations.db"
    assert get_settings_path() == tmp_path / ".aichat-context" / "settings.json"


def test_data_dir_override_moves_both_files(monkeypatch, tmp_path):
    monkeypatch.delenv("AICHAT_DB_PATH", raising=False)
    monkeypatch.delenv("AICHAT_SETTINGS_PATH", raising=False)
    monkeypatch.setenv("AICHAT_DATA_DIR", str(tmp_path))

    assert get_db_path() == tmp_path / "conversations.db"
    assert get_settings_path() == tmp_path / "settings.json"


def test_file_overrides_win(monkeypatch, tmp_path):
    monkeypatch.setenv("AICHAT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("AICHAT_DB_PATH", str(tmp_path / "custom.db"))
    monkeypatch.setenv("AICHAT_SETTINGS_PATH", str(tmp_path / "prefs.json"))

    assert get_db_path() == tmp_path / "custom.db"
    assert get_settings_path() == tmp_path / "prefs.json"


def test_model_table():
    assert DEFAULT_MODEL in MODELS
    opus = MODELS["claude-3-opus-20240229"]
    assert (opus.input_price_per_million, opus.output_price_per_million) == (15.0, 75.0)
    assert all(m.context_limit == 200_000 for m in MODELS.values())
