"""LibreTranslate provider.

LibreTranslate is a plain machine-translation API, not an LLM: no prompt,
just ``q``/``source``/``target``. ``base_url`` is the full ``/translate``
endpoint so self-hosted instances mounted under a path work unchanged.
"""

from __future__ import annotations

from typing import Any

from chat_relay.translation.providers.base import HTTPTranslationProvider, ProviderRequest


class LibreTranslateProvider(HTTPTranslationProvider):
    name = "libretranslate"

    def _build_request(
        self, text: str, source_language: str, target_language: str
    ) -> ProviderRequest:
        payload: dict[str, Any] = {
            "q": text,
            "source": source_language,
            "target": target_language,
            "format": "text",
        }
        if self.api_key:
            payload["api_key"] = self.api_key
        return ProviderRequest(url=self.base_url, json=payload)

    def _extract_text(self, data: Any) -> str:
        translated = data.get("translatedText")
        if translated:
            return translated
        # Some instances only fill the alternatives list.
        return data["alternatives"][0]
