"""Google Gemini provider (``generateContent`` REST endpoint).

Several API keys may be configured. Each key is rate limited separately by
Google, so a 429 suspends only that key (as ``gemini:key-<n>`` in the
shared suspension table) and the same call moves on to the next key. The
provider as a whole reports a rate limit only once every key is suspended,
with ``retry_after`` set to when the first one comes back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from typing import Any

from chat_relay.translation.errors import ErrorKind, ProviderError
from chat_relay.translation.providers.base import (
    SYSTEM_PROMPT,
    HTTPTranslationProvider,
    ProviderRequest,
    build_user_prompt,
)
from chat_relay.translation.suspension import ProviderSuspensions

logger = logging.getLogger(__name__)

# Used when no shared table is passed in; Gemini's per-minute quotas reset quickly.
_DEFAULT_KEY_SUSPENSION_SECONDS = 60.0


class GeminiProvider(HTTPTranslationProvider):
    name = "gemini"

    def __init__(
        self,
        *,
        api_keys: Iterable[str] = (),
        suspensions: ProviderSuspensions | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        keys: list[str] = []
        for key in (self.api_key, *api_keys):
            key = key.strip()
            if key and key not in keys:
                keys.append(key)
        self.api_keys = keys
        self.suspensions = suspensions or ProviderSuspensions(_DEFAULT_KEY_SUSPENSION_SECONDS)

    def key_id(self, index: int) -> str:
        """Suspension-table name of the key at ``index``."""
        return f"{self.name}:key-{index}"

    def _build_request(
        self, text: str, source_language: str, target_language: str
    ) -> ProviderRequest:
        return self._build_keyed_request(text, source_language, target_language, self.api_key)

    def _build_keyed_request(
        self, text: str, source_language: str, target_language: str, api_key: str
    ) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.base_url}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": api_key},
            json={
                "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
                "contents": [
                    {
                        "role": "user",
                        "parts": [
                            {"text": build_user_prompt(text, source_language, target_language)}
                        ],
                    }
                ],
                "generationConfig": {"temperature": 0.3},
            },
        )

    def _extract_text(self, data: Any) -> str:
        parts = data["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)

    async def translate(
        self, text: str, source_language: str, target_language: str, *, timeout: float
    ) -> str:
        """Translate with the first key that is not suspended.

        ``timeout`` bounds the whole call, including moving between keys.
        Errors other than a 429 are raised straight away.
        """
        if not self.api_keys:
            raise self._error("no API key configured", ErrorKind.PERMANENT)
        self._check_pair(source_language, target_language)

        deadline = time.monotonic() + timeout
        for index, key in enumerate(self.api_keys):
            key_id = self.key_id(index)
            if self.suspensions.is_suspended(key_id):
                logger.debug("Skipping %s (rate limited)", key_id)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise self._error(f"timed out after {timeout:.1f}s", ErrorKind.TIMEOUT)

            request = self._build_keyed_request(text, source_language, target_language, key)
            try:
                cleaned = await self._exchange(request, text, timeout=remaining)
            except ProviderError as exc:
                if not exc.rate_limited:
                    raise
                self.suspensions.suspend(key_id, exc.retry_after)
                continue
            logger.debug(
                "%s translated %s->%s with %s", self.name, source_language, target_language, key_id
            )
            return cleaned

        retry_after = min(
            self.suspensions.remaining(self.key_id(index)) for index in range(len(self.api_keys))
        )
        raise self._error(
            f"all {len(self.api_keys)} API key(s) are rate limited",
            ErrorKind.TRANSIENT,
            status_code=429,
            rate_limited=True,
            retry_after=retry_after,
        )
