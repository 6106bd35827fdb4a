"""Translation provider clients and the factory that builds the chain."""

from __future__ import annotations

from typing import Any

from chat_relay.config import RelayConfig
from chat_relay.translation.providers.base import (
    HTTPTranslationProvider,
    ProviderRequest,
    TranslationProvider,
)
from chat_relay.translation.providers.gemini import GeminiProvider
from chat_relay.translation.providers.google import GoogleProvider
from chat_relay.translation.providers.libretranslate import LibreTranslateProvider
from chat_relay.translation.providers.ollama import OllamaProvider
from chat_relay.translation.providers.openai import OpenAIProvider
from chat_relay.translation.suspension import ProviderSuspensions
from chat_relay.translation.validator import OutputValidator

PROVIDER_CLASSES: dict[str, type[HTTPTranslationProvider]] = {
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
    "libretranslate": LibreTranslateProvider,
    "gemini": GeminiProvider,
    "google": GoogleProvider,
}


def build_providers(
    cfg: RelayConfig, *, suspensions: ProviderSuspensions | None = None
) -> list[HTTPTranslationProvider]:
    """Instantiate the configured provider chain, in fail-over order.

    Unknown or duplicate names are skipped; ``validate_config`` reports them.
    ``suspensions`` is shared with Gemini so its per-key rate limits show
    up next to the dispatcher's provider-level ones.
    """
    validator = OutputValidator()
    providers: list[HTTPTranslationProvider] = []
    seen: set[str] = set()
    for name in cfg.translation.providers:
        cls = PROVIDER_CLASSES.get(name)
        if cls is None or name in seen:
            continue
        seen.add(name)
        settings = cfg.providers.get(name)
        kwargs: dict[str, Any] = {}
        if cls is GeminiProvider:
            kwargs = {"api_keys": settings.api_keys, "suspensions": suspensions}
        providers.append(
            cls(
                base_url=settings.base_url,
                model=settings.model,
                api_key=settings.api_key,
                validator=validator,
                **kwargs,
            )
        )
    return providers


__all__ = [
    "PROVIDER_CLASSES",
    "GeminiProvider",
    "GoogleProvider",
    "HTTPTranslationProvider",
    "LibreTranslateProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "ProviderRequest",
    "TranslationProvider",
    "build_providers",
]
