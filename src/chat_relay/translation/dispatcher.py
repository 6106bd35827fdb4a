"""Rate-limited, coalescing dispatcher for provider calls.

``RateLimitedDispatcher.request_translation(key)`` is the single entry
point between the chat pipeline and the network. It owns:

* the **concurrency budget**: at most ``max_concurrent`` provider calls run
  at once;
* the **admission queue**: up to ``max_queue_depth`` more requests wait in
  FIFO order; beyond that callers get ``Overloaded`` immediately;
* the **pending table**: one ``PendingRequest`` per ``TranslationKey``, so
  concurrent requests for the same key share one provider call;
* the **retry policy**: transient and timeout failures are retried with
  exponential backoff, bounded by ``max_attempts`` and
  ``retry_deadline_seconds``; permanent failures end the request at once;
* **fail-over**: each attempt goes to the next provider in the configured
  chain that is not suspended. A provider answering HTTP 429 is suspended.

Threading
---------
The dispatcher is a single-owner actor: every method except ``stats`` must
run on the worker event loop. The pending table, the queue and the counters
are therefore only touched from one thread and need no lock. Cross-thread
callers go through ``TranslationWorker.submit``.

Request lifecycle
-----------------
::

    ADMITTED ──> QUEUED ──> DISPATCHED ──> RESOLVED
        │          │          │  ^  │
        │          │          v  │  └──> FAILED
        │          │        RETRYING ──> FAILED
        └──────────┴──> FAILED (shutdown)

Illegal transitions raise ``RuntimeError``; they indicate a bug here, never
a provider problem.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from chat_relay.config import DispatchSettings
from chat_relay.translation.cache import TranslationCache, TranslationKey
from chat_relay.translation.errors import (
    Overloaded,
    ProviderError,
    TranslationFailed,
    TranslationOutcomeError,
)
from chat_relay.translation.providers.base import TranslationProvider
from chat_relay.translation.suspension import ProviderSuspensions

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST STATE MACHINE
# =============================================================================


class RequestState(Enum):
    ADMITTED = "admitted"
    QUEUED = "queued"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    RESOLVED = "resolved"
    FAILED = "failed"


_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.ADMITTED: frozenset(
        {RequestState.QUEUED, RequestState.DISPATCHED, RequestState.FAILED}
    ),
    RequestState.QUEUED: frozenset({RequestState.DISPATCHED, RequestState.FAILED}),
    RequestState.DISPATCHED: frozenset(
        {RequestState.RETRYING, RequestState.RESOLVED, RequestState.FAILED}
    ),
    RequestState.RETRYING: frozenset({RequestState.DISPATCHED, RequestState.FAILED}),
    RequestState.RESOLVED: frozenset(),
    RequestState.FAILED: frozenset(),
}


@dataclass
class PendingRequest:
    """In-flight work for one ``TranslationKey``.

    Attributes:
        key:           What is being translated.
        future:        Shared result handle; every waiter awaits it.
        admitted_at:   Clock time the first requester arrived.
        waiters:       Number of callers currently awaiting ``future``.
        attempts:      Provider calls made so far.
        dispatched_at: Clock time of the latest provider call.
        provider_name: Provider used for the latest call.
        state:         Position in the lifecycle.
    """

    key: TranslationKey
    future: asyncio.Future[str]
    admitted_at: float
    waiters: int = 1
    attempts: int = 0
    dispatched_at: float | None = None
    provider_name: str | None = None
    state: RequestState = RequestState.ADMITTED

    def advance(self, new_state: RequestState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"illegal transition {self.state.value} -> {new_state.value} for {self.key}"
            )
        self.state = new_state

    @property
    def terminal(self) -> bool:
        return self.state in (RequestState.RESOLVED, RequestState.FAILED)


def _consume_exception(future: asyncio.Future[str]) -> None:
    # Waiters may all have been cancelled; mark the exception as retrieved.
    if not future.cancelled():
        future.exception()


# =============================================================================
# DISPATCHER
# =============================================================================


class RateLimitedDispatcher:
    """Coalescing front door to the provider chain.

    Args:
        providers:   Provider chain in fail-over order.
        cache:       Translation cache checked before and filled after calls.
        settings:    Budget, queue, retry and timeout settings.
        cache_ttl:   TTL for entries this dispatcher writes; ``None`` uses
                     the cache default.
        suspensions: Shared suspension table; a private one is created if
                     omitted.
        sleep:       Backoff sleeper, injectable for tests.
        clock:       Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        providers: Sequence[TranslationProvider],
        cache: TranslationCache,
        settings: DispatchSettings,
        *,
        cache_ttl: float | None = None,
        suspensions: ProviderSuspensions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._providers = list(providers)
        self._cache = cache
        self._settings = settings
        self._cache_ttl = cache_ttl
        self._suspensions = suspensions or ProviderSuspensions(settings.suspension_seconds)
        self._sleep = sleep
        self._clock = clock

        self._pending: dict[TranslationKey, PendingRequest] = {}
        self._queue: deque[PendingRequest] = deque()
        self._active = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

        # Counters for stats()
        self._provider_calls = 0
        self._cache_hits = 0
        self._coalesced = 0
        self._overloaded = 0
        self._resolved = 0
        self._failed = 0

    @property
    def suspensions(self) -> ProviderSuspensions:
        return self._suspensions

    @property
    def providers(self) -> list[TranslationProvider]:
        return list(self._providers)

    def pending(self, key: TranslationKey) -> PendingRequest | None:
        """The in-flight request for ``key``, if any."""
        return self._pending.get(key)

    # ── Entry point ───────────────────────────────────────────────────────────

    async def request_translation(self, key: TranslationKey) -> str:
        """Translate ``key``, sharing work with identical concurrent requests.

        Returns:
            The translated text, from cache or from a provider.

        Raises:
            Overloaded:        Budget and queue are full, or every provider
                               is suspended. Nothing was registered.
            TranslationFailed: Permanent failure, retries exhausted, or
                               the dispatcher was closed.
        """
        if self._closed:
            raise TranslationFailed(key, "dispatcher is closed")

        # ── 1. Cache ──────────────────────────────────────────────────────────
        entry = self._cache.get(key)
        if entry is not None:
            self._cache_hits += 1
            return entry.translated_text

        # ── 2. Coalesce onto an in-flight request ────────────────────────────
        pending = self._pending.get(key)
        if pending is not None:
            pending.waiters += 1
            self._coalesced += 1
            logger.debug("Coalesced request for %s (%d waiters)", key, pending.waiters)
            return await self._wait(pending)

        # ── 3. Admission ──────────────────────────────────────────────────────
        budget_full = self._active >= self._settings.max_concurrent
        if budget_full and len(self._queue) >= self._settings.max_queue_depth:
            self._overloaded += 1
            raise Overloaded(
                f"{self._active} calls in flight and {len(self._queue)} queued; rejecting {key}"
            )
        if self._select_provider(0) is None:
            self._overloaded += 1
            raise Overloaded("every translation provider is suspended")

        pending = PendingRequest(
            key=key,
            future=asyncio.get_running_loop().create_future(),
            admitted_at=self._clock(),
        )
        pending.future.add_done_callback(_consume_exception)
        self._pending[key] = pending

        if budget_full:
            pending.advance(RequestState.QUEUED)
            self._queue.append(pending)
            logger.debug("Queued %s (queue depth %d)", key, len(self._queue))
        else:
            self._start(pending)

        return await self._wait(pending)

    async def _wait(self, pending: PendingRequest) -> str:
        # shield: one cancelled waiter must not cancel the shared call.
        try:
            return await asyncio.shield(pending.future)
        finally:
            pending.waiters -= 1

    # ── Execution ─────────────────────────────────────────────────────────────

    def _start(self, pending: PendingRequest) -> None:
        self._active += 1
        task = asyncio.get_running_loop().create_task(self._run(pending))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, pending: PendingRequest) -> None:
        try:
            text = await self._attempt(pending)
        except TranslationOutcomeError as exc:
            self._finish(pending, error=exc)
        except asyncio.CancelledError:
            self._finish(
                pending,
                error=TranslationFailed(
                    pending.key, "dispatcher is closed", attempts=pending.attempts
                ),
            )
            raise
        except Exception as exc:
            logger.error("Unexpected error translating %s: %s", pending.key, exc, exc_info=True)
            self._finish(
                pending,
                error=TranslationFailed(
                    pending.key, f"unexpected error: {exc!r}", attempts=pending.attempts
                ),
            )
        else:
            # Cache first, then release waiters: a request arriving after the
            # pending entry is gone must find the cached text.
            self._cache.put(pending.key, text, self._cache_ttl)
            self._finish(pending, result=text)
        finally:
            self._active -= 1
            self._drain_queue()

    async def _attempt(self, pending: PendingRequest) -> str:
        """Retry loop for one request. Returns text or raises an outcome error."""
        settings = self._settings
        key = pending.key
        deadline = pending.admitted_at + settings.retry_deadline_seconds
        first_provider: str | None = None

        while True:
            provider = self._select_provider(pending.attempts)
            if provider is None:
                if pending.attempts == 0:
                    raise Overloaded("every translation provider is suspended")
                raise TranslationFailed(
                    key, "no provider available for retry", attempts=pending.attempts
                )

            if first_provider is None:
                first_provider = provider.name
            elif provider.name != first_provider:
                logger.warning("Falling back to provider %s for %s", provider.name, key)

            pending.advance(RequestState.DISPATCHED)
            pending.attempts += 1
            pending.dispatched_at = self._clock()
            pending.provider_name = provider.name
            self._provider_calls += 1

            try:
                return await provider.translate(
                    key.normalized_text,
                    key.source_language,
                    key.target_language,
                    timeout=settings.timeout_seconds,
                )
            except ProviderError as exc:
                if exc.rate_limited:
                    self._suspensions.suspend(provider.name, exc.retry_after)

                if not exc.kind.retryable:
                    logger.warning("Permanent failure for %s: %s", key, exc)
                    raise TranslationFailed(key, str(exc), attempts=pending.attempts) from exc

                if pending.attempts >= settings.max_attempts:
                    logger.warning(
                        "Giving up on %s after %d attempts: %s", key, pending.attempts, exc
                    )
                    raise TranslationFailed(
                        key, f"retries exhausted: {exc}", attempts=pending.attempts
                    ) from exc

                # A rate-limited provider is now suspended; move on without waiting.
                delay = 0.0 if exc.rate_limited else self._backoff(pending.attempts)
                if self._clock() + delay >= deadline:
                    logger.warning("Retry deadline passed for %s: %s", key, exc)
                    raise TranslationFailed(
                        key, f"retry deadline passed: {exc}", attempts=pending.attempts
                    ) from exc

                pending.advance(RequestState.RETRYING)
                logger.info(
                    "Attempt %d/%d for %s failed (%s); retrying in %.2fs",
                    pending.attempts,
                    settings.max_attempts,
                    key,
                    exc.kind.value,
                    delay,
                )
                if delay > 0:
                    await self._sleep(delay)

    def _backoff(self, attempts: int) -> float:
        return self._settings.backoff_base_seconds * (2 ** (attempts - 1))

    def _select_provider(self, attempt_index: int) -> TranslationProvider | None:
        """Next non-suspended provider, rotating through the chain per attempt."""
        count = len(self._providers)
        for offset in range(count):
            provider = self._providers[(attempt_index + offset) % count]
            if not self._suspensions.is_suspended(provider.name):
                return provider
        return None

    def _finish(
        self,
        pending: PendingRequest,
        *,
        result: str | None = None,
        error: Exception | None = None,
    ) -> None:
        if pending.terminal:
            return
        if self._pending.get(pending.key) is pending:
            del self._pending[pending.key]

        if error is None:
            pending.advance(RequestState.RESOLVED)
            self._resolved += 1
            if not pending.future.done():
                pending.future.set_result(result)
        else:
            pending.advance(RequestState.FAILED)
            self._failed += 1
            if not pending.future.done():
                pending.future.set_exception(error)

    def _drain_queue(self) -> None:
        if self._closed:
            return
        while self._queue and self._active < self._settings.max_concurrent:
            pending = self._queue.popleft()
            if not pending.terminal:
                self._start(pending)

    # ── Lifecycle / diagnostics ───────────────────────────────────────────────

    async def aclose(self) -> None:
        """Fail every pending waiter and close the provider clients.

        After this returns no waiter is left hanging and new requests fail
        with ``TranslationFailed``.
        """
        if self._closed:
            return
        self._closed = True

        for pending in list(self._queue):
            self._finish(pending, error=TranslationFailed(pending.key, "dispatcher is closed"))
        self._queue.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for pending in list(self._pending.values()):
            self._finish(
                pending,
                error=TranslationFailed(
                    pending.key, "dispatcher is closed", attempts=pending.attempts
                ),
            )

        for provider in self._providers:
            await provider.aclose()
        logger.info("Dispatcher closed")

    def stats(self) -> dict[str, object]:
        return {
            "active": self._active,
            "queued": len(self._queue),
            "pending_keys": len(self._pending),
            "provider_calls": self._provider_calls,
            "cache_hits": self._cache_hits,
            "coalesced": self._coalesced,
            "overloaded": self._overloaded,
            "resolved": self._resolved,
            "failed": self._failed,
            "suspended_providers": self._suspensions.active(),
        }
