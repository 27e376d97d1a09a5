"""User settings with explicit persistence and change notification.

A SettingsStore is built once at startup (see server.create_app) and passed
to whatever needs it. Listeners registered with subscribe() receive a copy
of the settings after every change.
"""

import json
import logging
from dataclasses import asdict, fields, replace
from pathlib import Path
from typing import Callable, Optional

from pydantic import Field, ValidationError
from pydantic.dataclasses import dataclass

from .config import DEFAULT_MODEL, MODELS

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "sk-ant-"


@dataclass
class Settings:
    """User preferences. Values are type-checked on construction and replace()."""

    api_key: str = ""
    model: str = DEFAULT_MODEL
    temperature: float = Field(0.7, ge=0.0, le=1.0)
    max_tokens: int = Field(4096, ge=1)
    auto_trim: bool = False
    auto_trim_threshold: float = Field(0.8, gt=0.0, le=1.0)  # fraction of the context limit
    dark_mode: bool = False


SETTING_NAMES = frozenset(f.name for f in fields(Settings))

Listener = Callable[[Settings], None]


def validate_api_key(api_key: str) -> bool:
    return api_key.startswith(API_KEY_PREFIX) and len(api_key) > 20


def available_models() -> list[dict]:
    return [
        {"value": m.model_id, "label": m.display_name, "description": m.description}
        for m in MODELS.values()
    ]


class SettingsStore:
    """Holds the current Settings, backed by a JSON file when a path is given."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._settings = Settings()
        self._listeners: list[Listener] = []

    def load(self) -> Settings:
        """Read settings from disk, merging stored values over the defaults."""
        self._settings = Settings()
        if self.path is None or not self.path.exists():
            return self.get()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load settings from %s: %s", self.path, e)
            return self.get()

        if not isinstance(data, dict):
            logger.warning("Ignoring settings in %s: expected an object", self.path)
            return self.get()

        known, _ = self._check(data, str(self.path))
        self._settings = replace(self._settings, **known)
        return self.get()

    def save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(asdict(self._settings), indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", self.path, e)

    def get(self) -> Settings:
        return replace(self._settings)

    def update(self, **changes) -> Settings:
        """Apply changes, persist and notify. Unknown keys or invalid values raise ValueError."""
        unknown = set(changes) - SETTING_NAMES
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        self._settings = replace(self._settings, **changes)
        self.save()
        self._notify()
        return self.get()

    def reset(self) -> Settings:
        """Restore defaults, keeping the API key."""
        self._settings = Settings(api_key=self._settings.api_key)
        self.save()
        self._notify()
        return self.get()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def export_json(self) -> str:
        """Serialize settings for sharing. The API key is never exported."""
        data = asdict(self._settings)
        del data["api_key"]
        return json.dumps(data, indent=2)

    def import_json(self, text: str) -> bool:
        """Apply exported settings. The API key is never imported.

        Nothing is applied when any known setting has an invalid value.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("Failed to import settings: %s", e)
            return False
        if not isinstance(data, dict):
            logger.error("Failed to import settings: expected an object")
            return False

        changes, valid = self._check({k: v for k, v in data.items() if k != "api_key"}, "import")
        if not valid:
            return False
        self.update(**changes)
        return True

    def _check(self, data: dict, source: str) -> tuple[dict, bool]:
        """Keep known, well-typed values from data. Bad values are logged and dropped."""
        accepted = {}
        valid = True
        for key, value in data.items():
            if key not in SETTING_NAMES:
                continue
            try:
                checked = replace(self._settings, **{key: value})
            except ValidationError as e:
                logger.warning("Ignoring setting %s=%r from %s: %s", key, value, source, e.errors()[0]["msg"])
                valid = False
                continue
            accepted[key] = getattr(checked, key)
        return accepted, valid

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.get())
