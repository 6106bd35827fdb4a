"""Non-persistent preference store (preferences last until restart)."""

from __future__ import annotations


class MemoryPreferenceStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def load_all(self) -> dict[str, str]:
        return dict(self._data)

    def get(self, player_id: str) -> str | None:
        return self._data.get(player_id)

    def set(self, player_id: str, language: str) -> None:
        self._data[player_id] = language

    def remove(self, player_id: str) -> None:
        self._data.pop(player_id, None)

    def close(self) -> None:
        pass
