"""Temporary suspension of providers that answered HTTP 429.

When a provider says "too many requests" there is no point asking it again
for a while. The dispatcher records a suspension here and skips the
provider until it expires, moving on to the next provider in the chain.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ProviderSuspensions:
    """Thread-safe table of provider name → suspension expiry."""

    def __init__(self, default_seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self.default_seconds = default_seconds
        self._clock = clock
        self._until: dict[str, float] = {}
        self._lock = threading.Lock()

    def suspend(self, name: str, seconds: float | None = None) -> float:
        """Suspend ``name`` for ``seconds`` (default: the configured period).

        An existing longer suspension is kept. Returns the expiry time.
        """
        duration = self.default_seconds if seconds is None else max(seconds, 0.0)
        with self._lock:
            until = max(self._until.get(name, 0.0), self._clock() + duration)
            self._until[name] = until
        logger.warning("Provider %s rate limited, suspended for %.0fs", name, duration)
        return until

    def is_suspended(self, name: str) -> bool:
        with self._lock:
            until = self._until.get(name)
            if until is None:
                return False
            if self._clock() >= until:
                del self._until[name]
                logger.info("Provider %s suspension expired", name)
                return False
            return True

    def remaining(self, name: str) -> float:
        """Seconds left on ``name``'s suspension, 0 if not suspended."""
        with self._lock:
            until = self._until.get(name)
            return max(0.0, until - self._clock()) if until is not None else 0.0

    def clear(self, name: str | None = None) -> None:
        """Lift one suspension, or all of them."""
        with self._lock:
            if name is None:
                self._until.clear()
            else:
                self._until.pop(name, None)

    def active(self) -> list[str]:
        now = self._clock()
        with self._lock:
            return sorted(name for name, until in self._until.items() if until > now)
