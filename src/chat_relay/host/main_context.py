"""The host's single authoritative execution context.

Game servers mutate player-visible state from exactly one thread: the one
running the tick loop. ``MainContext`` models that thread for the relay:

* ``call_soon(fn, *args)`` is the "run on main context" primitive. It may
  be called from any thread (typically the translation worker) and only
  enqueues the call.
* ``run_pending()`` and ``tick()`` execute queued calls and tick hooks, and
  must only be called from the owning thread.

Nothing queued here ever runs concurrently with the host's own logic,
which is what lets the delivery scheduler and the formatter stay lock-free.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

TickHook = Callable[[], None]


class MainContext:
    """Thread-safe callback queue drained by the host's main thread.

    Attributes:
        tick_count: Number of completed ``tick()`` calls.
    """

    def __init__(self) -> None:
        self._queue: deque[tuple[Callable[..., Any], tuple[Any, ...]]] = deque()
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._owner: int | None = None
        self._closed = False
        self._tick_hooks: list[TickHook] = []
        self.tick_count = 0

    # ── Ownership ─────────────────────────────────────────────────────────────

    def bind(self) -> None:
        """Declare the calling thread the owner of this context."""
        self._owner = threading.get_ident()

    def is_main_thread(self) -> bool:
        return self._owner is None or threading.get_ident() == self._owner

    def _check_thread(self) -> None:
        if not self.is_main_thread():
            raise RuntimeError("MainContext may only be drained from its owning thread")

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Scheduling ────────────────────────────────────────────────────────────

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> bool:
        """Queue ``fn(*args)`` to run on the main context.

        Returns:
            ``False`` if the context is closed and the call was dropped.
        """
        with self._wakeup:
            if self._closed:
                return False
            self._queue.append((fn, args))
            self._wakeup.notify_all()
        return True

    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    def run_pending(self) -> int:
        """Run every call queued before this method started.

        Calls queued while the batch runs wait for the next drain, so a
        callback that reschedules itself cannot starve the tick loop.
        Exceptions are logged and do not stop the batch.

        Returns:
            Number of calls executed.
        """
        self._check_thread()
        with self._lock:
            batch = list(self._queue)
            self._queue.clear()
        for fn, args in batch:
            try:
                fn(*args)
            except Exception as e:
                logger.error("Main-context callback %r failed: %s", fn, e, exc_info=True)
        return len(batch)

    # ── Ticks ─────────────────────────────────────────────────────────────────

    def add_tick_hook(self, hook: TickHook) -> Callable[[], None]:
        """Run ``hook()`` at the end of every tick. Returns a remover."""
        self._tick_hooks.append(hook)

        def remove() -> None:
            if hook in self._tick_hooks:
                self._tick_hooks.remove(hook)

        return remove

    def tick(self) -> int:
        """One host tick: drain queued calls, then run tick hooks.

        Returns:
            Number of queued calls executed.
        """
        ran = self.run_pending()
        self.tick_count += 1
        for hook in list(self._tick_hooks):
            try:
                hook()
            except Exception as e:
                logger.error("Tick hook %r failed: %s", hook, e, exc_info=True)
        return ran

    def wait_for_work(self, timeout: float) -> bool:
        """Block until a call is queued, the context closes, or ``timeout``."""
        with self._wakeup:
            return self._wakeup.wait_for(lambda: bool(self._queue) or self._closed, timeout)

    def drain_until(
        self, predicate: Callable[[], bool], timeout: float, *, interval: float = 0.01
    ) -> bool:
        """Tick until ``predicate()`` holds or ``timeout`` seconds pass.

        Used by the CLI demo and by tests in place of a real game loop.

        Returns:
            Whether the predicate became true.
        """
        deadline = time.monotonic() + timeout
        while True:
            self.tick()
            if predicate():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.wait_for_work(min(interval, remaining))

    # ── Shutdown ──────────────────────────────────────────────────────────────

    def close(self) -> int:
        """Stop accepting calls and drop queued ones. Returns how many were dropped."""
        with self._wakeup:
            self._closed = True
            dropped = len(self._queue)
            self._queue.clear()
            self._wakeup.notify_all()
        if dropped:
            logger.info("Main context closed, dropped %d queued call(s)", dropped)
        return dropped
