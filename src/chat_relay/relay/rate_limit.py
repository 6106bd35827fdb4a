"""Sliding-window allowance of translated messages per sender.

A player spamming chat should not be able to burn the provider budget for
everyone else. Past the allowance their lines are still delivered, just
untranslated.

Runs on the main context only; there is no locking.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable


class PlayerRateLimiter:
    """At most ``max_messages`` translations per ``window_seconds`` per player.

    ``max_messages = 0`` (or a zero window) disables the limit.
    """

    def __init__(
        self,
        max_messages: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self._clock = clock
        self._history: dict[str, deque[float]] = {}

    @property
    def enabled(self) -> bool:
        return self.max_messages > 0 and self.window_seconds > 0

    def _trim(self, player_id: str, now: float) -> deque[float]:
        history = self._history.setdefault(player_id, deque())
        while history and now - history[0] >= self.window_seconds:
            history.popleft()
        return history

    def try_acquire(self, player_id: str) -> bool:
        """Record a translated message for ``player_id`` if the window allows it."""
        if not self.enabled:
            return True
        now = self._clock()
        history = self._trim(player_id, now)
        if len(history) >= self.max_messages:
            return False
        history.append(now)
        return True

    def remaining(self, player_id: str) -> int:
        if not self.enabled:
            return -1
        return self.max_messages - len(self._trim(player_id, self._clock()))

    def forget(self, player_id: str) -> None:
        self._history.pop(player_id, None)

    def clear(self) -> None:
        self._history.clear()
