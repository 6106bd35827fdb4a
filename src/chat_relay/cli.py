"""
Command-line interface for the chat translation relay.

Provides CLI commands for operating the relay outside a game server:
- check-config: Load and validate configuration, print what it enables
- translate: Translate one line through the configured provider chain
- set-lang: Set or remove a stored player language preference
- demo: Run a short scripted chat through an embedded host

Usage:
    chat-relay check-config [--config PATH]
    chat-relay translate "hello there" --to fr [--from en]
    chat-relay set-lang alice fr
    chat-relay set-lang alice --remove
    chat-relay demo --player alice:en --player bruno:fr

Environment Variables:
    CHAT_RELAY_CONFIG: INI file to read when --config is not given
    CHAT_RELAY_*:      Individual overrides, see chat_relay.config
"""

import argparse
import asyncio
import sys

from chat_relay.config import (
    ConfigError,
    RelayConfig,
    configure_logging,
    get_config_status,
    load_config,
    validate_config,
)
from chat_relay.translation.errors import Overloaded, TranslationFailed


def _load(args: argparse.Namespace) -> RelayConfig:
    cfg = load_config(args.config)
    if getattr(args, "verbose", False):
        cfg.logging.level = "DEBUG"
    configure_logging(cfg.logging)
    return cfg


def cmd_check_config(args: argparse.Namespace) -> int:
    """
    Load configuration and report errors and warnings.

    Returns:
        0 if the configuration is valid, 1 otherwise
    """
    try:
        cfg = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    status = get_config_status(cfg)
    print(f"Config file:      {status['config_file_path'] or '(defaults only)'}")
    if status["using_example"]:
        print("                  (example file; copy it to config/relay.ini)")
    print(f"Enabled:          {status['enabled']}")
    print(f"Providers:        {', '.join(status['providers']) or '(none)'}")
    print(f"Default language: {status['default_language']}")
    print(f"Storage:          {status['storage']}")
    print(f"Display mode:     {status['display_mode']}")

    result = validate_config(cfg)
    for warning in result.warnings:
        print(f"Warning: {warning}")
    if not result.is_valid:
        print("\nConfiguration is invalid:", file=sys.stderr)
        for error in result.errors:
            print(f"  - {error}", file=sys.stderr)
        return 1
    print("\nConfiguration OK.")
    return 0


async def _translate_once(cfg: RelayConfig, text: str, source: str, target: str) -> str:
    from chat_relay.translation.cache import TranslationCache, TranslationKey
    from chat_relay.translation.dispatcher import RateLimitedDispatcher
    from chat_relay.translation.providers import build_providers

    dispatcher = RateLimitedDispatcher(
        build_providers(cfg),
        TranslationCache(cfg.cache.capacity, cfg.cache.ttl_seconds),
        cfg.dispatch,
    )
    try:
        return await dispatcher.request_translation(TranslationKey.of(text, source, target))
    finally:
        await dispatcher.aclose()


def cmd_translate(args: argparse.Namespace) -> int:
    """
    Translate a single line and print the result.

    The source language is taken from --from, else detected from the
    script, else the configured default.

    Returns:
        0 on success, 1 on error
    """
    from chat_relay.translation.languages import detect_language, normalize_language

    try:
        cfg = _load(args)
        validate_config(cfg).raise_for_errors()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    target = normalize_language(args.to)
    if target is None:
        print(f"Error: not a language code: {args.to!r}", file=sys.stderr)
        return 1
    source = (
        normalize_language(args.source)
        or detect_language(args.text)
        or normalize_language(cfg.translation.default_language)
        or "en"
    )
    if source == target:
        print(args.text)
        return 0

    try:
        translated = asyncio.run(_translate_once(cfg, args.text, source, target))
    except Overloaded as e:
        print(f"Error: translation overloaded: {e}", file=sys.stderr)
        return 1
    except TranslationFailed as e:
        print(f"Error: translation failed: {e.reason}", file=sys.stderr)
        return 1

    print(translated)
    return 0


def cmd_set_lang(args: argparse.Namespace) -> int:
    """
    Set (or with --remove, delete) a stored player language preference.

    Writes straight to the configured store; a running server picks the
    change up on its next enable.

    Returns:
        0 on success, 1 on error
    """
    from chat_relay.storage import PlayerLanguages, StorageError, build_store

    if not args.remove and not args.language:
        print("Error: a language is required unless --remove is given.", file=sys.stderr)
        return 1

    try:
        cfg = _load(args)
        languages = PlayerLanguages(build_store(cfg.storage))
    except (ConfigError, StorageError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if cfg.storage.type == "memory":
        print("Warning: storage type is 'memory'; the preference will not persist.")

    try:
        if args.remove:
            languages.remove(args.player)
            print(f"Language preference for '{args.player}' removed.")
        else:
            code = languages.set(args.player, args.language)
            print(f"Language for '{args.player}' set to {code}.")
        return 0
    except (StorageError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        languages.close()


DEMO_LINES = [
    ("hello everyone, ready for the raid?", 0),
    ("meet at the north gate", 0),
    ("привіт, я вже тут", 2),
    ("gg", 0),
]


def _parse_player(value: str) -> tuple[str, str | None]:
    name, _, locale = value.partition(":")
    if not name:
        raise argparse.ArgumentTypeError(f"expected NAME[:LOCALE], got {value!r}")
    return name, locale or None


def cmd_demo(args: argparse.Namespace) -> int:
    """
    Run a scripted conversation through an embedded host and print each
    player's inbox.

    Returns:
        0 if the relay was active, 1 if it could not be enabled
    """
    from chat_relay.host import GameHost
    from chat_relay.plugin import TranslatorPlugin

    try:
        cfg = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    players = args.player or [("alice", "en_US"), ("bruno", "fr_FR"), ("olena", "uk_UA")]
    host = GameHost()
    plugin = TranslatorPlugin(host, cfg)
    if not plugin.enable():
        print("Error: translation could not be enabled; see the log.", file=sys.stderr)
        return 1

    for name, locale in players:
        host.connect(name, locale)

    names = [name for name, _ in players]
    for text, speaker in DEMO_LINES:
        host.submit_chat(names[speaker % len(names)], text)

    interceptor, scheduler = plugin.interceptor, plugin.scheduler
    if interceptor is None or scheduler is None:
        raise RuntimeError("relay enabled without a pipeline")
    settled = host.main.drain_until(
        lambda: interceptor.in_flight == 0 and scheduler.stats()["buffered"] == 0,
        timeout=args.timeout,
    )
    if not settled:
        print(f"Warning: translations still pending after {args.timeout:.0f}s")

    for name in names:
        print(f"\n== {name} ==")
        for line in host.player(name).inbox:
            print(f"  {line}")

    host.shutdown("demo finished")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="chat-relay",
        description="Live chat translation relay for multiplayer game servers",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="INI file to read (default: $CHAT_RELAY_CONFIG or config/relay.ini)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log at DEBUG level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # check-config command
    check_parser = subparsers.add_parser(
        "check-config",
        help="Validate the configuration",
        description="Load configuration from file and environment and report any problems.",
    )
    check_parser.set_defaults(func=cmd_check_config)

    # translate command
    translate_parser = subparsers.add_parser(
        "translate",
        help="Translate one line",
        description="Send one line through the configured provider chain and print the result.",
    )
    translate_parser.add_argument("text", help="Text to translate")
    translate_parser.add_argument("--to", "-t", required=True, help="Target language code")
    translate_parser.add_argument(
        "--from",
        "-f",
        dest="source",
        help="Source language code (default: detected, else default_language)",
    )
    translate_parser.set_defaults(func=cmd_translate)

    # set-lang command
    lang_parser = subparsers.add_parser(
        "set-lang",
        help="Set a player's language preference",
        description="Write a player language preference to the configured store.",
    )
    lang_parser.add_argument("player", help="Player id")
    lang_parser.add_argument("language", nargs="?", help="Language code, e.g. fr or uk_UA")
    lang_parser.add_argument(
        "--remove",
        action="store_true",
        help="Delete the stored preference instead of setting one",
    )
    lang_parser.set_defaults(func=cmd_set_lang)

    # demo command
    demo_parser = subparsers.add_parser(
        "demo",
        help="Run a scripted chat through an embedded host",
        description=(
            "Start an in-process host with the relay enabled, send a few chat lines "
            "and print what each player received."
        ),
    )
    demo_parser.add_argument(
        "--player",
        "-p",
        action="append",
        type=_parse_player,
        metavar="NAME[:LOCALE]",
        help="Player to connect (repeatable; default: alice:en_US bruno:fr_FR olena:uk_UA)",
    )
    demo_parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for translations (default: 30)",
    )
    demo_parser.set_defaults(func=cmd_demo)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
