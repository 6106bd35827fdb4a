"""Tests for chat_relay.config loading, overrides and validation."""

import json
import logging

import pytest

from chat_relay import config as relay_config
from chat_relay.config import (
    ConfigError,
    LoggingSettings,
    RelayConfig,
    _JsonFormatter,
    configure_logging,
    get_config_status,
    load_config,
    resolve_config_path,
    validate_config,
)


def _write_ini(tmp_path, body: str):
    path = tmp_path / "relay.ini"
    path.write_text(body, encoding="utf-8")
    return path


# ============================================================================
# LOADING
# ============================================================================


@pytest.mark.unit
def test_defaults_without_any_file():
    cfg = load_config()

    assert cfg.source_path is None
    assert cfg.translation.enabled is True
    assert cfg.translation.min_message_length == 3
    assert cfg.translation.providers == ["ollama"]
    assert cfg.cache.ttl_seconds == 30.0
    assert cfg.rate_limit.messages == 2
    assert cfg.rate_limit.window_seconds == 10.0
    assert cfg.dispatch.suspension_seconds == 1200.0
    assert cfg.display.mode == "compact"


@pytest.mark.unit
def test_ini_values_are_loaded(tmp_path):
    path = _write_ini(
        tmp_path,
        """
[translation]
enabled = false
default_language = de
min_message_length = 5
providers = OpenAI, gemini

[provider.openai]
api_key = sk-test
model = gpt-test

[dispatch]
timeout_seconds = 2.5
max_concurrent = 8
max_attempts = 5

[cache]
capacity = 10
ttl_seconds = 60

[display]
mode = Custom
custom_format = {player_name}: {translated_message} (100%%)

[storage]
type = YAML
path = /tmp/langs.yml

[logging]
level = debug
format = json
""",
    )

    cfg = load_config(path)

    assert cfg.source_path == path
    assert cfg.translation.enabled is False
    assert cfg.translation.default_language == "de"
    assert cfg.translation.min_message_length == 5
    assert cfg.translation.providers == ["openai", "gemini"]
    assert cfg.providers.openai.api_key == "sk-test"
    assert cfg.providers.openai.model == "gpt-test"
    assert cfg.providers.openai.base_url == "https://api.openai.com/v1"
    assert cfg.dispatch.timeout_seconds == 2.5
    assert cfg.dispatch.max_concurrent == 8
    assert cfg.dispatch.max_attempts == 5
    assert cfg.cache.capacity == 10
    assert cfg.cache.ttl_seconds == 60.0
    assert cfg.display.mode == "custom"
    # custom_format is read raw, no interpolation
    assert cfg.display.custom_format == "{player_name}: {translated_message} (100%%)"
    assert cfg.storage.type == "yaml"
    assert str(cfg.storage.absolute_path) == "/tmp/langs.yml"
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.format == "json"


@pytest.mark.unit
def test_explicit_missing_file_raises(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.ini")


@pytest.mark.unit
def test_non_numeric_option_raises(tmp_path):
    path = _write_ini(tmp_path, "[dispatch]\nmax_concurrent = lots\n")

    with pytest.raises(ConfigError, match=r"\[dispatch\] max_concurrent"):
        load_config(path)


@pytest.mark.unit
def test_config_env_var_selects_file(tmp_path, monkeypatch):
    path = _write_ini(tmp_path, "[translation]\ndefault_language = fr\n")
    monkeypatch.setenv("CHAT_RELAY_CONFIG", str(path))

    assert resolve_config_path() == path
    assert load_config().translation.default_language == "fr"


@pytest.mark.unit
def test_example_file_used_as_fallback(tmp_path, monkeypatch):
    example = tmp_path / "relay.example.ini"
    example.write_text("[cache]\ncapacity = 7\n", encoding="utf-8")
    monkeypatch.setattr(relay_config, "CONFIG_EXAMPLE", example)

    cfg = load_config()

    assert cfg.cache.capacity == 7
    assert get_config_status(cfg)["using_example"] is True


# ============================================================================
# ENVIRONMENT OVERRIDES
# ============================================================================


@pytest.mark.unit
def test_env_overrides_win_over_file(tmp_path, monkeypatch):
    path = _write_ini(tmp_path, "[translation]\nproviders = ollama\ndefault_language = de\n")
    monkeypatch.setenv("CHAT_RELAY_PROVIDERS", "gemini, libretranslate")
    monkeypatch.setenv("CHAT_RELAY_DEFAULT_LANGUAGE", "uk")
    monkeypatch.setenv("CHAT_RELAY_ENABLED", "no")
    monkeypatch.setenv("CHAT_RELAY_TIMEOUT_SECONDS", "4")
    monkeypatch.setenv("CHAT_RELAY_OLLAMA_URL", "http://gpu-box:11434")
    monkeypatch.setenv("CHAT_RELAY_GEMINI_API_KEY", "g-key")
    monkeypatch.setenv("CHAT_RELAY_LOG_LEVEL", "warning")

    cfg = load_config(path)

    assert cfg.translation.providers == ["gemini", "libretranslate"]
    assert cfg.translation.default_language == "uk"
    assert cfg.translation.enabled is False
    assert cfg.dispatch.timeout_seconds == 4.0
    assert cfg.providers.ollama.base_url == "http://gpu-box:11434"
    assert cfg.providers.gemini.api_key == "g-key"
    assert cfg.logging.level == "WARNING"


@pytest.mark.unit
def test_gemini_key_list_from_file_and_env(tmp_path, monkeypatch):
    path = _write_ini(tmp_path, "[provider.gemini]\napi_keys = k1, k2 ,\n")

    assert load_config(path).providers.gemini.api_keys == ["k1", "k2"]

    monkeypatch.setenv("CHAT_RELAY_GEMINI_API_KEYS", "k3,k4")

    assert load_config(path).providers.gemini.api_keys == ["k3", "k4"]


@pytest.mark.unit
def test_bad_timeout_env_raises(monkeypatch):
    monkeypatch.setenv("CHAT_RELAY_TIMEOUT_SECONDS", "soon")

    with pytest.raises(ConfigError):
        load_config()


# ============================================================================
# VALIDATION
# ============================================================================


@pytest.mark.unit
def test_default_config_is_valid():
    result = validate_config(RelayConfig())

    assert result.is_valid
    assert result.errors == []


@pytest.mark.unit
def test_unknown_provider_is_an_error():
    cfg = RelayConfig()
    cfg.translation.providers = ["ollama", "babelfish"]

    result = validate_config(cfg)

    assert not result.is_valid
    assert any("babelfish" in error for error in result.errors)


@pytest.mark.unit
def test_openai_without_key_is_an_error():
    cfg = RelayConfig()
    cfg.translation.providers = ["openai"]

    result = validate_config(cfg)

    assert any("[provider.openai] api_key" in error for error in result.errors)
    with pytest.raises(ConfigError, match="api_key"):
        result.raise_for_errors()


@pytest.mark.unit
def test_gemini_accepts_key_list_instead_of_single_key():
    cfg = RelayConfig()
    cfg.translation.providers = ["gemini"]

    assert any("[provider.gemini] api_key or api_keys" in e for e in validate_config(cfg).errors)

    cfg.providers.gemini.api_keys = ["k1", "k2"]

    assert validate_config(cfg).is_valid


@pytest.mark.unit
def test_google_needs_no_credentials():
    cfg = RelayConfig()
    cfg.translation.providers = ["google"]

    result = validate_config(cfg)

    assert result.is_valid
    assert result.warnings == []


@pytest.mark.unit
def test_key_list_on_other_provider_is_a_warning():
    cfg = RelayConfig()
    cfg.providers.ollama.api_keys = ["k1"]

    result = validate_config(cfg)

    assert result.is_valid
    assert any("api_keys is only used by gemini" in w for w in result.warnings)


@pytest.mark.unit
def test_credentials_only_checked_for_listed_providers():
    cfg = RelayConfig()
    cfg.translation.providers = ["ollama"]
    cfg.providers.gemini.api_key = ""

    assert validate_config(cfg).is_valid


@pytest.mark.unit
def test_libretranslate_without_key_is_a_warning():
    cfg = RelayConfig()
    cfg.translation.providers = ["libretranslate"]

    result = validate_config(cfg)

    assert result.is_valid
    assert any("libretranslate" in warning for warning in result.warnings)


@pytest.mark.unit
def test_duplicate_provider_is_a_warning():
    cfg = RelayConfig()
    cfg.translation.providers = ["ollama", "ollama"]

    result = validate_config(cfg)

    assert result.is_valid
    assert any("twice" in warning for warning in result.warnings)


@pytest.mark.unit
@pytest.mark.parametrize(
    "section, field, value",
    [
        ("dispatch", "timeout_seconds", 0),
        ("dispatch", "max_concurrent", 0),
        ("dispatch", "max_attempts", 0),
        ("cache", "capacity", 0),
        ("cache", "ttl_seconds", 0),
        ("delivery", "buffer_depth", 0),
        ("display", "mode", "fancy"),
        ("storage", "type", "postgres"),
    ],
)
def test_out_of_range_values_are_errors(section, field, value):
    cfg = RelayConfig()
    setattr(getattr(cfg, section), field, value)

    result = validate_config(cfg)

    assert not result.is_valid
    assert any(f"[{section}]" in error for error in result.errors)


@pytest.mark.unit
def test_disabled_config_skips_provider_checks():
    cfg = RelayConfig()
    cfg.translation.enabled = False
    cfg.translation.providers = []

    assert validate_config(cfg).is_valid


# ============================================================================
# LOGGING
# ============================================================================


@pytest.mark.unit
def test_configure_logging_sets_root_level():
    root = logging.getLogger()
    saved_level, saved_handlers = root.level, list(root.handlers)
    try:
        configure_logging(LoggingSettings(level="WARNING", format="simple"))
        assert root.level == logging.WARNING

        configure_logging(LoggingSettings(level="BOGUS", format="detailed"))
        assert root.level == logging.INFO
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)


@pytest.mark.unit
def test_json_formatter_emits_one_object():
    record = logging.LogRecord(
        "chat_relay.test", logging.INFO, __file__, 1, "hello %s", ("world",), None
    )

    payload = json.loads(_JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "chat_relay.test"
    assert payload["message"] == "hello world"
