"""Exception hierarchy for the translation pipeline.

Three layers raise these:

- provider clients raise ``ProviderError`` with a ``kind`` the dispatcher
  uses to decide whether to retry;
- the dispatcher raises ``Overloaded`` (admission refused before any
  network call) or ``TranslationFailed`` (terminal outcome for a key);
- the delivery scheduler uses ``StaleEvent`` internally for tickets whose
  recipient or reservation is gone.

``Overloaded`` and ``TranslationFailed`` are recoverable outcomes. The chat
interceptor turns both into "deliver the original text".
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_relay.translation.cache import TranslationKey


class RelayError(Exception):
    """Base class for every error the relay raises on purpose."""


class ErrorKind(Enum):
    """How a provider failure should be treated by the retry policy."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    TIMEOUT = "timeout"

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.PERMANENT


class ProviderError(RelayError):
    """A single provider call failed.

    Attributes:
        kind:         Retry classification.
        provider:     Name of the provider that failed.
        status_code:  HTTP status, when the failure came from a response.
        rate_limited: ``True`` for HTTP 429. The dispatcher suspends the
                      provider and tries the next one in the chain.
        retry_after:  Seconds from a ``Retry-After`` header, if present.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        provider: str = "",
        status_code: int | None = None,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.rate_limited = rate_limited
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return (
            f"ProviderError({str(self)!r}, kind={self.kind.value}, "
            f"provider={self.provider!r}, status_code={self.status_code})"
        )


class TranslationOutcomeError(RelayError):
    """Terminal, recoverable outcome of ``request_translation``."""


class Overloaded(TranslationOutcomeError):
    """Local admission refused: concurrency budget and queue are both full,
    or every configured provider is currently suspended."""


class TranslationFailed(TranslationOutcomeError):
    """Every waiter for ``key`` is released with this after a permanent
    error, retry exhaustion, or shutdown."""

    def __init__(self, key: TranslationKey, reason: str, *, attempts: int = 0) -> None:
        super().__init__(f"translation failed after {attempts} attempt(s): {reason}")
        self.key = key
        self.reason = reason
        self.attempts = attempts


class StaleEvent(RelayError):
    """A delivery ticket no longer has a live recipient or reservation."""
