"""Ollama provider.

Talks to the ``/api/chat`` endpoint of a local or remote Ollama instance
with ``stream`` disabled, so the whole answer arrives as one JSON object.
Hosted or proxied instances that require a key get it as a Bearer token.
"""

from __future__ import annotations

from typing import Any

from chat_relay.translation.providers.base import (
    SYSTEM_PROMPT,
    HTTPTranslationProvider,
    ProviderRequest,
    build_user_prompt,
)

# Low temperature keeps translations literal.
_DEFAULT_TEMPERATURE = 0.2

# Conservative token ceiling for a single chat line.
_DEFAULT_NUM_PREDICT = 256


class OllamaProvider(HTTPTranslationProvider):
    name = "ollama"

    @property
    def api_endpoint(self) -> str:
        """Full Ollama ``/api/chat`` URL constructed from ``base_url``."""
        return f"{self.base_url}/api/chat"

    def _build_request(
        self, text: str, source_language: str, target_language: str
    ) -> ProviderRequest:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return ProviderRequest(
            url=self.api_endpoint,
            headers=headers,
            json={
                "model": self.model,
                "stream": False,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": build_user_prompt(text, source_language, target_language),
                    },
                ],
                "options": {
                    "temperature": _DEFAULT_TEMPERATURE,
                    "num_predict": _DEFAULT_NUM_PREDICT,
                },
            },
        )

    def _extract_text(self, data: Any) -> str:
        return data["message"]["content"]
