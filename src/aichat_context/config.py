"""Paths, model tables and fixed thresholds."""

import os
from dataclasses import dataclass
from pathlib import Path


def get_data_dir() -> Path:
    """Return the directory holding the database and settings file."""
    env = os.environ.get("AICHAT_DATA_DIR")
    if env:
        return Path(env)

    return Path.home() / ".aichat-context"


def get_db_path() -> Path:
    """Return the path to the SQLite conversation database."""
    env = os.environ.get("AICHAT_DB_PATH")
    if env:
        return Path(env)

    return get_data_dir() / "conversations.db"


def get_settings_path() -> Path:
    """Return the path to the persisted user settings."""
    env = os.environ.get("AICHAT_SETTINGS_PATH")
    if env:
        return Path(env)

    return get_data_dir() / "settings.json"


@dataclass(frozen=True)
class ModelInfo:
    """Static pricing and context data for one model."""

    model_id: str
    display_name: str
    description: str
    input_price_per_million: float  # USD
    output_price_per_million: float  # USD
    context_limit: int  # tokens


MODELS: dict[str, ModelInfo] = {
    m.model_id: m
    for m in (
        ModelInfo(
            model_id="claude-3-5-sonnet-20241022",
            display_name="Claude 3.5 Sonnet",
            description="Best balance of intelligence and speed",
            input_price_per_million=3.0,
            output_price_per_million=15.0,
            context_limit=200_000,
        ),
        ModelInfo(
            model_id="claude-3-opus-20240229",
            display_name="Claude 3 Opus",
            description="Most capable model, higher cost",
            input_price_per_million=15.0,
            output_price_per_million=75.0,
            context_limit=200_000,
        ),
        ModelInfo(
            model_id="claude-3-haiku-20240307",
            display_name="Claude 3 Haiku",
            description="Fastest and most affordable",
            input_price_per_million=0.25,
            output_price_per_million=1.25,
            context_limit=200_000,
        ),
    )
}

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_CONTEXT_LIMIT = 200_000

# Fractions of the context limit
WARNING_THRESHOLD = 0.70
CRITICAL_THRESHOLD = 0.85
EMERGENCY_THRESHOLD = 0.95

# Recommended trim target as a fraction of the context limit
RECOMMENDED_TRIM_RATIO = 0.5

COMPACT_MAX_TOKENS = 8000

TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New Conversation"
