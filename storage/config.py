"""Settings record persisted through the key-value store."""
from __future__ import annotations

import logging
from typing import Any

from core.settings import SETTINGS_KEY, SETTINGS_STORE
from models.settings import AppSettings
from storage.store import KeyValueStore


logger = logging.getLogger("taskmaster.storage")


def load_settings(store: KeyValueStore) -> AppSettings:
    """Return stored settings merged over defaults, saving defaults on first run."""
    saved = store.get(SETTINGS_STORE, SETTINGS_KEY)
    if saved is None:
        settings = AppSettings()
        save_settings(store, settings)
        logger.info("Initialised default settings")
        return settings
    return AppSettings.from_record(saved)


def save_settings(store: KeyValueStore, settings: AppSettings) -> None:
    store.put(SETTINGS_STORE, settings.to_record())


def update_settings(store: KeyValueStore, **changes: Any) -> AppSettings:
    settings = load_settings(store)
    for key, value in changes.items():
        if hasattr(settings, key) and key != "id":
            setattr(settings, key, value)
    save_settings(store, settings)
    return settings


__all__ = ["load_settings", "save_settings", "update_settings"]
