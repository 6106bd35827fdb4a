"""Player language preference storage."""

from __future__ import annotations

from chat_relay.config import StorageSettings
from chat_relay.storage.base import PlayerLanguages, PreferenceStore, StorageError
from chat_relay.storage.memory import MemoryPreferenceStore
from chat_relay.storage.sqlite_store import SQLitePreferenceStore
from chat_relay.storage.yaml_store import YamlPreferenceStore


def build_store(settings: StorageSettings) -> PreferenceStore:
    """Instantiate the store named by ``settings.type``.

    Raises:
        StorageError: If the backing file cannot be opened or read.
        ValueError:   For an unknown store type.
    """
    if settings.type == "memory":
        return MemoryPreferenceStore()
    if settings.type == "sqlite":
        return SQLitePreferenceStore(settings.absolute_path)
    if settings.type == "yaml":
        return YamlPreferenceStore(settings.absolute_path)
    raise ValueError(f"unknown storage type: {settings.type!r}")


__all__ = [
    "MemoryPreferenceStore",
    "PlayerLanguages",
    "PreferenceStore",
    "SQLitePreferenceStore",
    "StorageError",
    "YamlPreferenceStore",
    "build_store",
]
