"""Player language preference storage contract.

Stores are simple key/value persistence for ``player_id -> language``.
The relay never reads a store on the chat path: ``PlayerLanguages`` loads
everything once at enable time and writes through on change.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Protocol

from chat_relay.translation.errors import RelayError
from chat_relay.translation.languages import normalize_language

logger = logging.getLogger(__name__)


class StorageError(RelayError):
    """A preference store could not read or write its backing file/database."""


class PreferenceStore(Protocol):
    def load_all(self) -> dict[str, str]: ...

    def get(self, player_id: str) -> str | None: ...

    def set(self, player_id: str, language: str) -> None: ...

    def remove(self, player_id: str) -> None: ...

    def close(self) -> None: ...


class PlayerLanguages(Mapping[str, str]):
    """In-memory preference map with write-through persistence.

    Reads (the resolver, on every chat line) hit only the dict. Writes go to
    the store first so memory never claims something that was not saved.
    """

    def __init__(self, store: PreferenceStore) -> None:
        self._store = store
        self._languages: dict[str, str] = {}

    def load(self) -> int:
        """Replace the in-memory map with the store's contents."""
        self._languages = {
            player_id: code
            for player_id, raw in self._store.load_all().items()
            if (code := normalize_language(raw))
        }
        logger.info("Loaded %d player language preference(s)", len(self._languages))
        return len(self._languages)

    def set(self, player_id: str, language: str) -> str:
        """Persist and cache a preference. Returns the normalized code.

        Raises:
            ValueError:   If ``language`` is not a recognizable code.
            StorageError: If the store could not save it.
        """
        code = normalize_language(language)
        if code is None:
            raise ValueError(f"not a language code: {language!r}")
        self._store.set(player_id, code)
        self._languages[player_id] = code
        return code

    def remove(self, player_id: str) -> None:
        self._store.remove(player_id)
        self._languages.pop(player_id, None)

    def close(self) -> None:
        self._store.close()

    def __getitem__(self, player_id: str) -> str:
        return self._languages[player_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._languages)

    def __len__(self) -> int:
        return len(self._languages)
