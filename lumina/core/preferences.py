"""The single AppSettings record of a user profile."""

from __future__ import annotations

import threading
from dataclasses import fields, replace
from typing import TYPE_CHECKING, Any

from lumina.core.models import AppSettings, ThemeColor
from lumina.core.storage import SETTINGS_KEY

if TYPE_CHECKING:
    from lumina.core.storage import DB


class PreferencesStore:
    """Holds and persists the current AppSettings. Thread-safe."""

    def __init__(self, db: DB, settings: AppSettings | None = None) -> None:
        self._db = db
        self._settings = settings or AppSettings()
        self._lock = threading.Lock()

    @classmethod
    def load_or_default(cls, db: DB) -> PreferencesStore:
        raw = db.get_snapshot(SETTINGS_KEY)
        return cls(db, AppSettings.from_dict(raw) if raw is not None else AppSettings())

    def get(self) -> AppSettings:
        """Return a copy of the current settings."""
        with self._lock:
            return replace(self._settings)

    def update(self, **changes: Any) -> AppSettings:
        """Apply `changes` in place and persist.

        Raises:
            ValueError: On unknown field names or an invalid theme color.
        """
        known = {f.name for f in fields(AppSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        if "theme_color" in changes:
            changes["theme_color"] = ThemeColor(changes["theme_color"])
        if "enable_ai_images" in changes:
            changes["enable_ai_images"] = bool(changes["enable_ai_images"])

        with self._lock:
            updated = replace(self._settings, **changes)
            self._db.set_snapshot(SETTINGS_KEY, updated.to_dict())
            self._settings = updated
            return replace(updated)

    def reset(self) -> AppSettings:
        with self._lock:
            defaults = AppSettings()
            self._db.set_snapshot(SETTINGS_KEY, defaults.to_dict())
            self._settings = defaults
            return replace(defaults)
