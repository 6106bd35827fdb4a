"""Google Translate provider over the keyless ``translate_a/single`` endpoint.

No credentials and no model: a GET with the text in the query string. The
endpoint is unofficial and throttles aggressively, so it is best placed
behind a keyed provider in the chain; a 429 suspends it like any other.

The answer is a nested list rather than an object::

    [[["bonjour ", "hello ", null, null, 10], ["à tous", "everyone", ...]], null, "en", ...]

The translation is the concatenation of the first element of each segment.
"""

from __future__ import annotations

from typing import Any

from chat_relay.translation.providers.base import HTTPTranslationProvider, ProviderRequest

# Codes Google spells differently from the rest of the relay.
_GOOGLE_CODES = {
    "zh": "zh-CN",
    "he": "iw",
}


def google_language_code(code: str) -> str:
    return _GOOGLE_CODES.get(code, code)


class GoogleProvider(HTTPTranslationProvider):
    name = "google"

    def _build_request(
        self, text: str, source_language: str, target_language: str
    ) -> ProviderRequest:
        return ProviderRequest(
            url=self.base_url,
            method="GET",
            headers={"User-Agent": "Mozilla/5.0"},
            params={
                "client": "gtx",
                "sl": google_language_code(source_language),
                "tl": google_language_code(target_language),
                "dt": "t",
                "q": text,
            },
        )

    def _extract_text(self, data: Any) -> str:
        return "".join(segment[0] for segment in data[0] if segment and segment[0])
