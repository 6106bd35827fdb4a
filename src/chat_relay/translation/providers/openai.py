"""OpenAI-compatible chat completions provider.

Works with api.openai.com and with self-hosted servers exposing the same
``/chat/completions`` shape (vLLM, LM Studio, OpenRouter).
"""

from __future__ import annotations

from typing import Any

from chat_relay.translation.providers.base import (
    SYSTEM_PROMPT,
    HTTPTranslationProvider,
    ProviderRequest,
    build_user_prompt,
)


class OpenAIProvider(HTTPTranslationProvider):
    name = "openai"

    def _build_request(
        self, text: str, source_language: str, target_language: str
    ) -> ProviderRequest:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return ProviderRequest(
            url=f"{self.base_url}/chat/completions",
            headers=headers,
            json={
                "model": self.model,
                "temperature": 0.3,
                "max_tokens": 512,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": build_user_prompt(text, source_language, target_language),
                    },
                ],
            },
        )

    def _extract_text(self, data: Any) -> str:
        return data["choices"][0]["message"]["content"]
