"""Shared HTTP plumbing for translation providers.

Every provider client does exactly one thing: one HTTP round-trip that
turns ``(text, source, target)`` into translated text, or a classified
``ProviderError``. Retry, backoff and fail-over belong to the dispatcher;
a client never retries on its own. The one exception is Gemini moving to
its next API key after a 429, which is key rotation within a single call.

Most providers POST a JSON body; ``ProviderRequest.method`` lets a
provider send a GET with query parameters instead (Google).

Timeouts
--------
The deadline is enforced twice: httpx gets it as its request timeout, and
the whole exchange (connect, send, read body) is wrapped in
``asyncio.wait_for``. The second guard catches providers that trickle
bytes slowly enough to keep resetting httpx's per-phase read timer.

Error classification
--------------------
======================================  ===========  ============
Failure                                 kind         rate_limited
======================================  ===========  ============
deadline exceeded, HTTP 408             TIMEOUT      no
connect/reset/protocol error            TRANSIENT    no
HTTP 429                                TRANSIENT    yes
HTTP 5xx                                TRANSIENT    no
other HTTP 4xx (bad key, bad pair)      PERMANENT    no
non-JSON body, missing fields           TRANSIENT    no
empty or rejected model output          TRANSIENT    no
same source and target language         PERMANENT    no
======================================  ===========  ============
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from chat_relay.translation.errors import ErrorKind, ProviderError
from chat_relay.translation.languages import display_name
from chat_relay.translation.validator import OutputValidator

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a translator for a multiplayer game chat. "
    "Translate the player's message directly: do not add, remove or explain anything. "
    "Keep gaming slang, player names, commands (like /msg) and placeholders "
    "(like {player} or %item%) exactly as written. "
    "Preserve punctuation, emoji and the informal tone. "
    "Return ONLY the translated text, without quotes or notes."
)


def build_user_prompt(text: str, source_language: str, target_language: str) -> str:
    """Per-message instruction sent alongside ``SYSTEM_PROMPT``."""
    return (
        f"Translate from {display_name(source_language)} to {display_name(target_language)}.\n\n"
        f"Text:\n{text}"
    )


class TranslationProvider(Protocol):
    """What the dispatcher needs from a provider."""

    name: str

    async def translate(
        self, text: str, source_language: str, target_language: str, *, timeout: float
    ) -> str: ...

    async def aclose(self) -> None: ...


@dataclass
class ProviderRequest:
    """One outbound HTTP request, as built by a concrete provider."""

    url: str
    json: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    method: str = "POST"


def _parse_retry_after(value: str | None) -> float | None:
    """Seconds from a ``Retry-After`` header. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class HTTPTranslationProvider:
    """Base class for providers that answer in JSON over HTTP.

    Subclasses implement ``_build_request`` and ``_extract_text``. The
    ``httpx.AsyncClient`` is created lazily on first use so that it binds
    to whichever event loop actually runs the calls (the worker loop).

    Attributes:
        name:       Provider name used in logs and suspensions.
        base_url:   Endpoint root from configuration.
        model:      Model name, where the provider has one.
        api_key:    Credential, where the provider needs one.
    """

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        model: str = "",
        api_key: str = "",
        validator: OutputValidator | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self._validator = validator or OutputValidator()
        self._client = client
        self._owns_client = client is None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r}, model={self.model!r})"

    # ── Hooks ─────────────────────────────────────────────────────────────────

    def _build_request(
        self, text: str, source_language: str, target_language: str
    ) -> ProviderRequest:
        raise NotImplementedError

    def _extract_text(self, data: Any) -> str:
        """Pull the translated text out of a decoded JSON body.

        May raise ``KeyError``, ``IndexError``, ``TypeError`` or ``AttributeError`` on an
        unexpected shape; the caller classifies those as malformed.
        """
        raise NotImplementedError

    # ── Public API ────────────────────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _error(self, message: str, kind: ErrorKind, **kwargs: Any) -> ProviderError:
        return ProviderError(f"{self.name}: {message}", kind=kind, provider=self.name, **kwargs)

    async def translate(
        self, text: str, source_language: str, target_language: str, *, timeout: float
    ) -> str:
        """Translate ``text`` with a single HTTP call.

        Args:
            text:            Text to translate (already normalized).
            source_language: Short language code of ``text``.
            target_language: Short language code wanted.
            timeout:         Hard deadline in seconds for the whole call.

        Returns:
            The validated translation.

        Raises:
            ProviderError: Classified per the table in the module docstring.
        """
        self._check_pair(source_language, target_language)
        request = self._build_request(text, source_language, target_language)
        cleaned = await self._exchange(request, text, timeout=timeout)
        logger.debug("%s translated %s->%s", self.name, source_language, target_language)
        return cleaned

    def _check_pair(self, source_language: str, target_language: str) -> None:
        if source_language == target_language:
            raise self._error(
                f"source and target language are both {source_language!r}", ErrorKind.PERMANENT
            )

    async def _exchange(self, request: ProviderRequest, text: str, *, timeout: float) -> str:
        """Send ``request`` and return the validated translation of ``text``."""
        try:
            response = await asyncio.wait_for(
                self._get_client().request(
                    request.method,
                    request.url,
                    json=request.json,
                    headers=request.headers,
                    params=request.params or None,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise self._error(f"timed out after {timeout:.1f}s", ErrorKind.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise self._error(f"transport error: {exc!r}", ErrorKind.TRANSIENT) from exc

        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise self._error("response body is not JSON", ErrorKind.TRANSIENT) from exc

        try:
            raw = self._extract_text(data)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise self._error(f"unexpected response shape: {exc!r}", ErrorKind.TRANSIENT) from exc

        cleaned = self._validator.validate(raw, text)
        if cleaned is None:
            raise self._error("empty or malformed translation", ErrorKind.TRANSIENT)
        return cleaned

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            raise self._error(
                "rate limited (HTTP 429)",
                ErrorKind.TRANSIENT,
                status_code=status,
                rate_limited=True,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status == 408:
            raise self._error("request timeout (HTTP 408)", ErrorKind.TIMEOUT, status_code=status)
        if status >= 500:
            raise self._error(
                f"server error (HTTP {status})", ErrorKind.TRANSIENT, status_code=status
            )
        raise self._error(
            f"request rejected (HTTP {status}): {response.text[:200]}",
            ErrorKind.PERMANENT,
            status_code=status,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this provider created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
