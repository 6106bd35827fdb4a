"""
Relay configuration management.

This module handles loading relay configuration from multiple sources with a
clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/relay.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Unlike a server-wide settings module, configuration here is NOT loaded at
import time. The plugin lifecycle owns it: ``TranslatorPlugin`` calls
``load_config()`` on enable and drops the object on disable, so two plugins
in one process never share hidden state.

Usage:
    from chat_relay.config import load_config, validate_config

    cfg = load_config()
    validate_config(cfg).raise_for_errors()
    print(cfg.dispatch.timeout_seconds)

Environment Variable Mapping:
    CHAT_RELAY_CONFIG                  -> path of the INI file to read
    CHAT_RELAY_ENABLED                 -> translation.enabled
    CHAT_RELAY_PROVIDERS               -> translation.providers
    CHAT_RELAY_DEFAULT_LANGUAGE        -> translation.default_language
    CHAT_RELAY_TIMEOUT_SECONDS         -> dispatch.timeout_seconds
    CHAT_RELAY_OLLAMA_URL              -> provider.ollama.base_url
    CHAT_RELAY_OPENAI_API_KEY          -> provider.openai.api_key
    CHAT_RELAY_GEMINI_API_KEY          -> provider.gemini.api_key
    CHAT_RELAY_GEMINI_API_KEYS         -> provider.gemini.api_keys (comma-separated)
    CHAT_RELAY_LIBRETRANSLATE_API_KEY  -> provider.libretranslate.api_key
    CHAT_RELAY_STORAGE_PATH            -> storage.path
    CHAT_RELAY_LOG_LEVEL               -> logging.level
"""

from __future__ import annotations

import configparser
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from chat_relay.translation.errors import RelayError

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Config file paths
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "relay.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "relay.example.ini"

KNOWN_PROVIDERS = ("ollama", "openai", "libretranslate", "gemini", "google")
DISPLAY_MODES = ("compact", "replace", "separate", "custom")
STORAGE_TYPES = ("memory", "sqlite", "yaml")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(RelayError):
    """Raised when the relay cannot start because its configuration is unusable."""


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class TranslationSettings:
    """Top-level switches for the translation pipeline."""

    enabled: bool = True
    default_language: str = "en"
    min_message_length: int = 3
    providers: list[str] = field(default_factory=lambda: ["ollama"])


@dataclass
class ProviderSettings:
    """Endpoint and credentials for one translation provider."""

    base_url: str = ""
    model: str = ""
    api_key: str = ""
    # Extra keys rotated through on HTTP 429 (Gemini only).
    api_keys: list[str] = field(default_factory=list)


@dataclass
class ProvidersSettings:
    """Per-provider sections, keyed by provider name."""

    ollama: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            base_url="http://localhost:11434", model="gemma2:2b"
        )
    )
    openai: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            base_url="https://api.openai.com/v1", model="gpt-4o-mini"
        )
    )
    libretranslate: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(base_url="https://libretranslate.com/translate")
    )
    gemini: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            base_url="https://generativelanguage.googleapis.com/v1beta",
            model="gemini-2.0-flash",
        )
    )
    google: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(
            base_url="https://translate.googleapis.com/translate_a/single"
        )
    )

    def get(self, name: str) -> ProviderSettings:
        """Return the settings block for ``name`` (one of ``KNOWN_PROVIDERS``)."""
        return getattr(self, name)


@dataclass
class DispatchSettings:
    """Outbound budget, retry and timeout policy for provider calls."""

    timeout_seconds: float = 10.0
    max_concurrent: int = 4
    max_queue_depth: int = 64
    max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    retry_deadline_seconds: float = 30.0
    suspension_seconds: float = 1200.0


@dataclass
class CacheSettings:
    """Translation cache sizing."""

    capacity: int = 1000
    ttl_seconds: float = 30.0


@dataclass
class DeliverySettings:
    """Per-recipient ordering buffer."""

    buffer_depth: int = 16
    buffer_timeout_seconds: float = 3.0


@dataclass
class RateLimitSettings:
    """Per-sender translation allowance. ``messages = 0`` disables the limit."""

    messages: int = 2
    window_seconds: float = 10.0


@dataclass
class DisplaySettings:
    """How translated lines are rendered by the default formatter."""

    mode: Literal["compact", "replace", "separate", "custom"] = "compact"
    prefix: str = "[T]"
    custom_format: str = "[T] {player_name} >> {translated_message}"


@dataclass
class StorageSettings:
    """Player language preference persistence."""

    type: Literal["memory", "sqlite", "yaml"] = "memory"
    path: str = "data/player_langs.db"

    @property
    def absolute_path(self) -> Path:
        """Get absolute path to the storage file."""
        p = Path(self.path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed", "json"] = "detailed"


@dataclass
class RelayConfig:
    """
    Complete relay configuration.

    Aggregates all settings sections. Instances are plain mutable
    dataclasses so tests can tweak a field before handing the object to
    the plugin.
    """

    translation: TranslationSettings = field(default_factory=TranslationSettings)
    providers: ProvidersSettings = field(default_factory=ProvidersSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    display: DisplaySettings = field(default_factory=DisplaySettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source_path: Path | None = None


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _parse_bool(value: str) -> bool:
    """Parse a string value to boolean."""
    return value.lower() in ("true", "yes", "1", "on", "enabled")


def _parse_list(value: str) -> list[str]:
    """Parse a comma-separated string to list, stripping whitespace."""
    if not value or value.strip() == "":
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _read_float(parser: configparser.ConfigParser, section: str, option: str) -> float:
    try:
        return parser.getfloat(section, option)
    except ValueError as exc:
        raise ConfigError(f"[{section}] {option} must be a number") from exc


def _read_int(parser: configparser.ConfigParser, section: str, option: str) -> int:
    try:
        return parser.getint(section, option)
    except ValueError as exc:
        raise ConfigError(f"[{section}] {option} must be an integer") from exc


def _load_from_ini(parser: configparser.ConfigParser, cfg: RelayConfig) -> None:
    """Load configuration from a parsed INI file into ``RelayConfig``."""
    # Translation section
    if parser.has_section("translation"):
        if parser.has_option("translation", "enabled"):
            cfg.translation.enabled = _parse_bool(parser.get("translation", "enabled"))
        if parser.has_option("translation", "default_language"):
            cfg.translation.default_language = parser.get("translation", "default_language")
        if parser.has_option("translation", "min_message_length"):
            cfg.translation.min_message_length = _read_int(
                parser, "translation", "min_message_length"
            )
        if parser.has_option("translation", "providers"):
            cfg.translation.providers = [
                name.lower() for name in _parse_list(parser.get("translation", "providers"))
            ]

    # Provider sections: [provider.ollama], [provider.openai], ...
    for name in KNOWN_PROVIDERS:
        section = f"provider.{name}"
        if not parser.has_section(section):
            continue
        settings = cfg.providers.get(name)
        for option in ("base_url", "model", "api_key"):
            if parser.has_option(section, option):
                setattr(settings, option, parser.get(section, option).strip())
        if parser.has_option(section, "api_keys"):
            settings.api_keys = _parse_list(parser.get(section, "api_keys"))

    # Dispatch section
    if parser.has_section("dispatch"):
        for option in (
            "timeout_seconds",
            "backoff_base_seconds",
            "retry_deadline_seconds",
            "suspension_seconds",
        ):
            if parser.has_option("dispatch", option):
                setattr(cfg.dispatch, option, _read_float(parser, "dispatch", option))
        for option in ("max_concurrent", "max_queue_depth", "max_attempts"):
            if parser.has_option("dispatch", option):
                setattr(cfg.dispatch, option, _read_int(parser, "dispatch", option))

    # Cache section
    if parser.has_section("cache"):
        if parser.has_option("cache", "capacity"):
            cfg.cache.capacity = _read_int(parser, "cache", "capacity")
        if parser.has_option("cache", "ttl_seconds"):
            cfg.cache.ttl_seconds = _read_float(parser, "cache", "ttl_seconds")

    # Delivery section
    if parser.has_section("delivery"):
        if parser.has_option("delivery", "buffer_depth"):
            cfg.delivery.buffer_depth = _read_int(parser, "delivery", "buffer_depth")
        if parser.has_option("delivery", "buffer_timeout_seconds"):
            cfg.delivery.buffer_timeout_seconds = _read_float(
                parser, "delivery", "buffer_timeout_seconds"
            )

    # Rate limit section
    if parser.has_section("rate_limit"):
        if parser.has_option("rate_limit", "messages"):
            cfg.rate_limit.messages = _read_int(parser, "rate_limit", "messages")
        if parser.has_option("rate_limit", "window_seconds"):
            cfg.rate_limit.window_seconds = _read_float(parser, "rate_limit", "window_seconds")

    # Display section
    if parser.has_section("display"):
        if parser.has_option("display", "mode"):
            cfg.display.mode = parser.get("display", "mode").lower()  # type: ignore[assignment]
        if parser.has_option("display", "prefix"):
            cfg.display.prefix = parser.get("display", "prefix")
        if parser.has_option("display", "custom_format"):
            cfg.display.custom_format = parser.get("display", "custom_format", raw=True)

    # Storage section
    if parser.has_section("storage"):
        if parser.has_option("storage", "type"):
            cfg.storage.type = parser.get("storage", "type").lower()  # type: ignore[assignment]
        if parser.has_option("storage", "path"):
            cfg.storage.path = parser.get("storage", "path")

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed", "json"):
                cfg.logging.format = val  # type: ignore[assignment]


def _apply_env_overrides(cfg: RelayConfig) -> None:
    """Apply environment variable overrides to configuration."""
    if env_enabled := os.getenv("CHAT_RELAY_ENABLED"):
        cfg.translation.enabled = _parse_bool(env_enabled)
    if env_providers := os.getenv("CHAT_RELAY_PROVIDERS"):
        cfg.translation.providers = [name.lower() for name in _parse_list(env_providers)]
    if env_lang := os.getenv("CHAT_RELAY_DEFAULT_LANGUAGE"):
        cfg.translation.default_language = env_lang
    if env_timeout := os.getenv("CHAT_RELAY_TIMEOUT_SECONDS"):
        try:
            cfg.dispatch.timeout_seconds = float(env_timeout)
        except ValueError as exc:
            raise ConfigError("CHAT_RELAY_TIMEOUT_SECONDS must be a number") from exc

    # Provider endpoints and credentials
    if env_ollama := os.getenv("CHAT_RELAY_OLLAMA_URL"):
        cfg.providers.ollama.base_url = env_ollama
    if env_openai_key := os.getenv("CHAT_RELAY_OPENAI_API_KEY"):
        cfg.providers.openai.api_key = env_openai_key
    if env_gemini_key := os.getenv("CHAT_RELAY_GEMINI_API_KEY"):
        cfg.providers.gemini.api_key = env_gemini_key
    if env_gemini_keys := os.getenv("CHAT_RELAY_GEMINI_API_KEYS"):
        cfg.providers.gemini.api_keys = _parse_list(env_gemini_keys)
    if env_libre_key := os.getenv("CHAT_RELAY_LIBRETRANSLATE_API_KEY"):
        cfg.providers.libretranslate.api_key = env_libre_key

    if env_storage := os.getenv("CHAT_RELAY_STORAGE_PATH"):
        cfg.storage.path = env_storage
    if env_log := os.getenv("CHAT_RELAY_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()


def resolve_config_path(path: str | Path | None = None) -> Path | None:
    """Pick the INI file to read, or ``None`` when only defaults apply."""
    if path is not None:
        return Path(path)
    if env_path := os.getenv("CHAT_RELAY_CONFIG"):
        return Path(env_path)
    if CONFIG_FILE.exists():
        return CONFIG_FILE
    if CONFIG_EXAMPLE.exists():
        # Use example as fallback for development
        return CONFIG_EXAMPLE
    return None


def load_config(path: str | Path | None = None) -> RelayConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. ``path`` if given, else ``$CHAT_RELAY_CONFIG``, else config/relay.ini
        3. config/relay.example.ini (fallback for development)
        4. Built-in defaults

    Args:
        path: Explicit INI file. It must exist when given.

    Returns:
        RelayConfig: Fully populated configuration object.

    Raises:
        ConfigError: If an explicitly requested file is missing or a
            numeric option cannot be parsed.
    """
    cfg = RelayConfig()

    config_file = resolve_config_path(path)
    if config_file is not None:
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        parser = configparser.ConfigParser()
        try:
            parser.read(config_file, encoding="utf-8")
        except configparser.Error as exc:
            raise ConfigError(f"Malformed config file {config_file}: {exc}") from exc
        _load_from_ini(parser, cfg)
        cfg.source_path = config_file

    # Apply environment variable overrides (highest priority)
    _apply_env_overrides(cfg)

    return cfg


# =============================================================================
# VALIDATION
# =============================================================================


@dataclass
class ValidationResult:
    """Outcome of ``validate_config``.

    Errors prevent the pipeline from activating. Warnings are logged and
    otherwise ignored.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise ``ConfigError`` listing every error, if there are any."""
        if self.errors:
            raise ConfigError("; ".join(self.errors))


def _is_http_url(value: str) -> bool:
    return value.startswith(("http://", "https://")) and len(value) > len("https://")


def _validate_provider(name: str, settings: ProviderSettings, result: ValidationResult) -> None:
    section = f"[provider.{name}]"
    if not _is_http_url(settings.base_url):
        result.errors.append(f"{section} base_url must be an http(s) URL")

    if name in ("ollama", "openai", "gemini") and not settings.model:
        result.errors.append(f"{section} model is required")

    if name == "openai" and not settings.api_key:
        result.errors.append(f"{section} api_key is required")

    if name == "gemini" and not (settings.api_key or settings.api_keys):
        result.errors.append(f"{section} api_key or api_keys is required")

    if settings.api_keys and name != "gemini":
        result.warnings.append(f"{section} api_keys is only used by gemini; ignored")

    if name == "libretranslate" and not settings.api_key:
        result.warnings.append(
            f"{section} api_key is empty; public instances usually require one"
        )


def validate_config(cfg: RelayConfig) -> ValidationResult:
    """
    Check a loaded configuration for problems that would break the pipeline.

    Provider credentials are only checked for providers that are actually
    listed in ``translation.providers``.

    Args:
        cfg: Configuration to check.

    Returns:
        ValidationResult with separate error and warning lists.
    """
    result = ValidationResult()

    # ── Translation ──────────────────────────────────────────────────────────
    if not cfg.translation.default_language.strip():
        result.errors.append("[translation] default_language must not be empty")
    if cfg.translation.min_message_length < 0:
        result.errors.append("[translation] min_message_length must be >= 0")

    if cfg.translation.enabled:
        if not cfg.translation.providers:
            result.errors.append("[translation] providers must list at least one provider")
        seen: set[str] = set()
        for name in cfg.translation.providers:
            if name not in KNOWN_PROVIDERS:
                result.errors.append(
                    f"[translation] unknown provider {name!r} "
                    f"(expected one of {', '.join(KNOWN_PROVIDERS)})"
                )
                continue
            if name in seen:
                result.warnings.append(f"[translation] provider {name!r} listed twice")
                continue
            seen.add(name)
            _validate_provider(name, cfg.providers.get(name), result)

    # ── Dispatch ─────────────────────────────────────────────────────────────
    dispatch = cfg.dispatch
    if dispatch.timeout_seconds <= 0:
        result.errors.append("[dispatch] timeout_seconds must be > 0")
    if dispatch.max_concurrent < 1:
        result.errors.append("[dispatch] max_concurrent must be >= 1")
    if dispatch.max_queue_depth < 0:
        result.errors.append("[dispatch] max_queue_depth must be >= 0")
    if dispatch.max_attempts < 1:
        result.errors.append("[dispatch] max_attempts must be >= 1")
    if dispatch.backoff_base_seconds < 0:
        result.errors.append("[dispatch] backoff_base_seconds must be >= 0")
    if dispatch.suspension_seconds < 0:
        result.errors.append("[dispatch] suspension_seconds must be >= 0")
    if dispatch.retry_deadline_seconds < dispatch.timeout_seconds:
        result.warnings.append(
            "[dispatch] retry_deadline_seconds is shorter than timeout_seconds; "
            "retries will rarely happen"
        )

    # ── Cache / delivery / rate limit ────────────────────────────────────────
    if cfg.cache.capacity < 1:
        result.errors.append("[cache] capacity must be >= 1")
    if cfg.cache.ttl_seconds <= 0:
        result.errors.append("[cache] ttl_seconds must be > 0")
    if cfg.delivery.buffer_depth < 1:
        result.errors.append("[delivery] buffer_depth must be >= 1")
    if cfg.delivery.buffer_timeout_seconds <= 0:
        result.errors.append("[delivery] buffer_timeout_seconds must be > 0")
    if cfg.rate_limit.messages < 0 or cfg.rate_limit.window_seconds < 0:
        result.errors.append("[rate_limit] messages and window_seconds must be >= 0")

    # ── Display / storage / logging ──────────────────────────────────────────
    if cfg.display.mode not in DISPLAY_MODES:
        result.errors.append(
            f"[display] mode must be one of {', '.join(DISPLAY_MODES)}, got {cfg.display.mode!r}"
        )
    elif cfg.display.mode == "custom" and "{translated_message}" not in cfg.display.custom_format:
        result.warnings.append("[display] custom_format has no {translated_message} token")
    if cfg.storage.type not in STORAGE_TYPES:
        result.errors.append(
            f"[storage] type must be one of {', '.join(STORAGE_TYPES)}, got {cfg.storage.type!r}"
        )
    if cfg.logging.level not in LOG_LEVELS:
        result.warnings.append(f"[logging] unknown level {cfg.logging.level!r}, using INFO")

    return result


# =============================================================================
# LOGGING SETUP
# =============================================================================

_LOG_FORMATS = {
    "simple": "%(levelname)s: %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
}


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(settings: LoggingSettings) -> None:
    """Install a root handler matching ``settings``.

    Safe to call more than once; the previous root handlers are replaced.
    """
    level = settings.level if settings.level in LOG_LEVELS else "INFO"
    handler = logging.StreamHandler()
    if settings.format == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_LOG_FORMATS[settings.format]))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def get_config_status(cfg: RelayConfig) -> dict:
    """
    Summarise where configuration came from and what it enables.

    Used by ``chat-relay check-config`` and by ``TranslatorPlugin.status()``.
    """
    return {
        "config_file_path": str(cfg.source_path) if cfg.source_path else None,
        "using_example": cfg.source_path == CONFIG_EXAMPLE,
        "enabled": cfg.translation.enabled,
        "providers": list(cfg.translation.providers),
        "default_language": cfg.translation.default_language,
        "storage": cfg.storage.type,
        "display_mode": cfg.display.mode,
    }
