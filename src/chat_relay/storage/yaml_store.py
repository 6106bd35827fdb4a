"""YAML preference store.

A flat mapping, one player per line::

    alice: en
    bogdan: uk

The whole file is rewritten on every change (write to a temp file, then
rename), which is fine for the few hundred players a server keeps.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

import yaml

from chat_relay.storage.base import StorageError


class YamlPreferenceStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as fh:
                loaded = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise StorageError(f"{self.path} must contain a mapping of player id to language")
        return {str(key): str(value) for key, value in loaded.items() if value}

    def _write(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                yaml.safe_dump(self._data, fh, allow_unicode=True, sort_keys=True)
            os.replace(tmp, self.path)
        except (OSError, yaml.YAMLError) as exc:
            raise StorageError(f"cannot write {self.path}: {exc}") from exc

    def load_all(self) -> dict[str, str]:
        with self._lock:
            return dict(self._data)

    def get(self, player_id: str) -> str | None:
        with self._lock:
            return self._data.get(player_id)

    def set(self, player_id: str, language: str) -> None:
        with self._lock:
            previous = self._data.get(player_id)
            self._data[player_id] = language
            try:
                self._write()
            except StorageError:
                if previous is None:
                    del self._data[player_id]
                else:
                    self._data[player_id] = previous
                raise

    def remove(self, player_id: str) -> None:
        with self._lock:
            if self._data.pop(player_id, None) is not None:
                self._write()

    def close(self) -> None:
        pass
