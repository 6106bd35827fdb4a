"""Bounded LRU + TTL translation cache.

The cache maps a ``TranslationKey`` to the text a provider returned for it.
It sits in front of the dispatcher so repeated phrases ("gg", "hello",
"thanks") never reach the network twice within the TTL.

Concurrency
-----------
Reads and writes come from the worker event loop and, for diagnostics and
the CLI, from other threads. Every public method takes one
``threading.Lock``; none of them do I/O, so the lock is held for a few
dictionary operations at most.

Eviction
--------
* **TTL**: checked lazily. An expired entry is removed when a ``get`` finds
  it, or in bulk via ``purge_expired``.
* **Capacity**: ``put`` evicts least-recently-used entries until the size
  fits. ``get`` counts as use and moves the entry to the fresh end.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

Clock = Callable[[], float]


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and strip the ends. Case is preserved."""
    return " ".join(text.split())


@dataclass(frozen=True)
class TranslationKey:
    """Identity of a translation for caching and request coalescing.

    Attributes:
        normalized_text:  Source text after ``normalize_text``.
        source_language:  Short language code (``"en"``).
        target_language:  Short language code (``"fr"``).
    """

    normalized_text: str
    source_language: str
    target_language: str

    @classmethod
    def of(cls, text: str, source_language: str, target_language: str) -> TranslationKey:
        """Build a key from raw chat text."""
        return cls(normalize_text(text), source_language, target_language)

    def __str__(self) -> str:
        preview = self.normalized_text[:24]
        return f"{self.source_language}->{self.target_language}:{preview!r}"


@dataclass(frozen=True)
class TranslationEntry:
    """A cached translation. Immutable once stored."""

    key: TranslationKey
    translated_text: str
    obtained_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TranslationCache:
    """Thread-safe LRU cache with per-entry expiry.

    Attributes:
        capacity:    Maximum number of live entries.
        default_ttl: TTL in seconds used when ``put`` is given none.
    """

    def __init__(self, capacity: int, default_ttl: float, *, clock: Clock = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be > 0")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[TranslationKey, TranslationEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: TranslationKey) -> TranslationEntry | None:
        """Return the live entry for ``key`` and mark it recently used.

        Expired entries are removed and reported as absent.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def peek(self, key: TranslationKey) -> TranslationEntry | None:
        """Like ``get`` but without touching recency or counters."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry

    def put(self, key: TranslationKey, translated_text: str, ttl: float | None = None) -> None:
        """Insert or overwrite ``key``, evicting LRU entries beyond capacity."""
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            self._entries[key] = TranslationEntry(
                key=key,
                translated_text=translated_text,
                obtained_at=now,
                expires_at=now + ttl,
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
                self._evictions += 1

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, TranslationKey) and self.peek(key) is not None
