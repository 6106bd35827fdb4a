"""
Unit tests for CLI module (chat_relay/cli.py).

Tests cover:
- Command parsing and dispatch
- check-config exit codes
- translate command (patched and over a mocked Ollama endpoint)
- set-lang against a YAML store
- demo command with an in-process provider
"""

import argparse
import logging
from unittest.mock import AsyncMock, patch

import pytest
import respx
import yaml
from httpx import Response

from chat_relay import cli
from chat_relay.translation.cache import TranslationKey
from chat_relay.translation.errors import Overloaded, TranslationFailed
from tests.fakes import FakeProvider


@pytest.fixture(autouse=True)
def restore_root_logger():
    """``configure_logging`` replaces root handlers; put them back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def write_config(tmp_path):
    def write(body: str):
        path = tmp_path / "relay.ini"
        path.write_text(body, encoding="utf-8")
        return path

    return write


# ============================================================================
# CHECK-CONFIG COMMAND TESTS
# ============================================================================


@pytest.mark.unit
def test_check_config_defaults_are_valid(capsys):
    """Built-in defaults pass validation."""
    assert cli.main(["check-config"]) == 0

    out = capsys.readouterr().out
    assert "(defaults only)" in out
    assert "Providers:        ollama" in out
    assert "Configuration OK." in out


@pytest.mark.unit
def test_check_config_reports_errors(capsys, write_config):
    """Invalid settings give exit code 1 and a list of problems."""
    path = write_config("[translation]\nproviders = openai\n\n[cache]\ncapacity = 0\n")

    assert cli.main(["--config", str(path), "check-config"]) == 1

    err = capsys.readouterr().err
    assert "[provider.openai] api_key is required" in err
    assert "[cache] capacity must be >= 1" in err


@pytest.mark.unit
def test_check_config_prints_warnings(capsys, write_config):
    path = write_config("[translation]\nproviders = libretranslate\n")

    assert cli.main(["-c", str(path), "check-config"]) == 0

    assert "Warning: [provider.libretranslate] api_key is empty" in capsys.readouterr().out


@pytest.mark.unit
def test_check_config_missing_file(capsys, tmp_path):
    assert cli.main(["-c", str(tmp_path / "nope.ini"), "check-config"]) == 1
    assert "Config file not found" in capsys.readouterr().err


# ============================================================================
# TRANSLATE COMMAND TESTS
# ============================================================================


@pytest.mark.unit
def test_translate_prints_result(capsys):
    with patch.object(cli, "_translate_once", AsyncMock(return_value="bonjour")) as mock_once:
        assert cli.main(["translate", "hello", "--to", "fr_FR"]) == 0

    assert capsys.readouterr().out.strip() == "bonjour"
    _, text, source, target = mock_once.call_args.args
    assert (text, source, target) == ("hello", "en", "fr")


@pytest.mark.unit
def test_translate_detects_source_script(capsys):
    with patch.object(cli, "_translate_once", AsyncMock(return_value="hello")) as mock_once:
        assert cli.main(["translate", "привіт усім", "-t", "en"]) == 0

    assert mock_once.call_args.args[2] == "uk"


@pytest.mark.unit
def test_translate_same_language_echoes(capsys):
    with patch.object(cli, "_translate_once", AsyncMock()) as mock_once:
        assert cli.main(["translate", "hello", "--to", "en", "--from", "en"]) == 0

    mock_once.assert_not_called()
    assert capsys.readouterr().out.strip() == "hello"


@pytest.mark.unit
def test_translate_bad_target(capsys):
    assert cli.main(["translate", "hello", "--to", "42"]) == 1
    assert "not a language code" in capsys.readouterr().err


@pytest.mark.unit
@pytest.mark.parametrize(
    "error, message",
    [
        (Overloaded("busy"), "translation overloaded"),
        (TranslationFailed(TranslationKey.of("hello", "en", "fr"), "timed out"), "timed out"),
    ],
)
def test_translate_failures_exit_1(capsys, error, message):
    with patch.object(cli, "_translate_once", AsyncMock(side_effect=error)):
        assert cli.main(["translate", "hello", "--to", "fr"]) == 1

    assert message in capsys.readouterr().err


@pytest.mark.unit
@respx.mock
def test_translate_against_mocked_ollama(capsys, monkeypatch):
    monkeypatch.setenv("CHAT_RELAY_OLLAMA_URL", "http://ollama.test:11434")
    route = respx.post("http://ollama.test:11434/api/chat").mock(
        return_value=Response(200, json={"message": {"role": "assistant", "content": "bonjour"}})
    )

    assert cli.main(["translate", "hello", "--to", "fr"]) == 0

    assert route.called
    assert capsys.readouterr().out.strip() == "bonjour"


# ============================================================================
# SET-LANG COMMAND TESTS
# ============================================================================


@pytest.fixture
def yaml_config(write_config, tmp_path):
    store = tmp_path / "langs.yaml"
    path = write_config(f"[storage]\ntype = yaml\npath = {store}\n")
    return path, store


@pytest.mark.unit
def test_set_lang_writes_store(capsys, yaml_config):
    config_path, store = yaml_config

    assert cli.main(["-c", str(config_path), "set-lang", "bogdan", "uk_UA"]) == 0

    assert "set to uk" in capsys.readouterr().out
    assert yaml.safe_load(store.read_text(encoding="utf-8")) == {"bogdan": "uk"}


@pytest.mark.unit
def test_set_lang_remove(capsys, yaml_config):
    config_path, store = yaml_config
    store.write_text("bogdan: uk\nalice: en\n", encoding="utf-8")

    assert cli.main(["-c", str(config_path), "set-lang", "bogdan", "--remove"]) == 0

    assert yaml.safe_load(store.read_text(encoding="utf-8")) == {"alice": "en"}


@pytest.mark.unit
def test_set_lang_requires_language(capsys, yaml_config):
    config_path, _ = yaml_config

    assert cli.main(["-c", str(config_path), "set-lang", "bogdan"]) == 1
    assert "a language is required" in capsys.readouterr().err


@pytest.mark.unit
def test_set_lang_rejects_bad_code(capsys, yaml_config):
    config_path, store = yaml_config

    assert cli.main(["-c", str(config_path), "set-lang", "bogdan", "!!"]) == 1
    assert not store.exists()


@pytest.mark.unit
def test_set_lang_memory_store_warns(capsys):
    assert cli.main(["set-lang", "bogdan", "uk"]) == 0
    assert "will not persist" in capsys.readouterr().out


# ============================================================================
# DEMO COMMAND TESTS
# ============================================================================


@pytest.mark.unit
def test_parse_player():
    assert cli._parse_player("alice:en_US") == ("alice", "en_US")
    assert cli._parse_player("bruno") == ("bruno", None)
    with pytest.raises(argparse.ArgumentTypeError):
        cli._parse_player(":fr")


@pytest.mark.unit
def test_demo_prints_inboxes(capsys):
    with patch("chat_relay.plugin.build_providers", return_value=[FakeProvider()]):
        assert cli.main(["demo", "--timeout", "5"]) == 0

    out = capsys.readouterr().out
    assert "== bruno ==" in out
    assert "[fr] hello everyone, ready for the raid?" in out
    assert "[en] привіт, я вже тут" in out
    assert "<alice> gg" in out


@pytest.mark.unit
def test_demo_fails_when_relay_cannot_enable(capsys, write_config):
    path = write_config("[translation]\nproviders = nonsense\n")

    assert cli.main(["-c", str(path), "demo"]) == 1
    assert "could not be enabled" in capsys.readouterr().err


# ============================================================================
# MAIN ENTRY POINT TESTS
# ============================================================================


@pytest.mark.unit
def test_main_no_command(capsys):
    """Test main with no command shows help."""
    with patch("sys.argv", ["chat-relay"]):
        result = cli.main()

    assert result == 0
    assert "check-config" in capsys.readouterr().out


@pytest.mark.unit
def test_main_verbose_sets_debug():
    with patch.object(cli, "configure_logging") as mock_logging:
        cli.main(["-v", "check-config"])

    assert mock_logging.call_args.args[0].level == "DEBUG"
