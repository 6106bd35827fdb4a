"""SQLite preference store.

One table, created on first use::

    player_langs(player_id TEXT PRIMARY KEY, lang TEXT NOT NULL)

Each operation opens a short-lived connection through ``connection_scope``
so the store can be used from any thread without sharing a connection.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from chat_relay.storage.base import StorageError

_SCHEMA = """
CREATE TABLE IF NOT EXISTS player_langs (
    player_id TEXT PRIMARY KEY,
    lang TEXT NOT NULL
)
"""


class SQLitePreferenceStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot create directory for {self.path}: {exc}") from exc
        with self.connection_scope(write=True) as connection:
            connection.execute(_SCHEMA)

    @contextmanager
    def connection_scope(self, *, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success for writes, always close.

        ``sqlite3.Error`` is re-raised as ``StorageError``.
        """
        try:
            connection = sqlite3.connect(str(self.path))
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open {self.path}: {exc}") from exc
        try:
            connection.execute("PRAGMA busy_timeout = 5000")
            yield connection
            if write:
                connection.commit()
        except sqlite3.Error as exc:
            if write:
                try:
                    connection.rollback()
                except sqlite3.Error:
                    pass
            raise StorageError(f"{self.path}: {exc}") from exc
        finally:
            connection.close()

    def load_all(self) -> dict[str, str]:
        with self.connection_scope() as connection:
            rows = connection.execute("SELECT player_id, lang FROM player_langs").fetchall()
        return {player_id: lang for player_id, lang in rows}

    def get(self, player_id: str) -> str | None:
        with self.connection_scope() as connection:
            row = connection.execute(
                "SELECT lang FROM player_langs WHERE player_id = ?", (player_id,)
            ).fetchone()
        return row[0] if row else None

    def set(self, player_id: str, language: str) -> None:
        with self.connection_scope(write=True) as connection:
            connection.execute(
                "INSERT INTO player_langs (player_id, lang) VALUES (?, ?) "
                "ON CONFLICT(player_id) DO UPDATE SET lang = excluded.lang",
                (player_id, language),
            )

    def remove(self, player_id: str) -> None:
        with self.connection_scope(write=True) as connection:
            connection.execute("DELETE FROM player_langs WHERE player_id = ?", (player_id,))

    def close(self) -> None:
        # Connections are per-operation; nothing is held open.
        pass
