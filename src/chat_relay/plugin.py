"""
Translator plugin lifecycle.

``TranslatorPlugin`` is what a game server embeds. ``enable()`` loads and
validates configuration, builds every pipeline component and subscribes
to the host; ``disable()`` tears it all down again. All of the relay's
process-scoped state (cache, dispatcher, worker thread, preference map)
lives on the plugin instance and nowhere else.

Usage:
    host = GameHost()
    plugin = TranslatorPlugin(host)
    if plugin.enable():
        ...
    host.shutdown()          # emits server:stopping, which disables the plugin

If configuration is invalid the plugin logs the problems and stays
inactive: chat keeps flowing through the host's default delivery,
untranslated. Pass ``strict=True`` to get a ``ConfigError`` instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from chat_relay.config import (
    ConfigError,
    RelayConfig,
    get_config_status,
    load_config,
    validate_config,
)
from chat_relay.host.bus import HostEvent
from chat_relay.host.events import Events
from chat_relay.host.runtime import GameHost
from chat_relay.relay.formatting import ChatFormatter, DisplayFormatter, PlaceholderResolver
from chat_relay.relay.interceptor import ChatInterceptor
from chat_relay.relay.rate_limit import PlayerRateLimiter
from chat_relay.relay.scheduler import DeliveryScheduler
from chat_relay.storage import (
    MemoryPreferenceStore,
    PlayerLanguages,
    PreferenceStore,
    StorageError,
    build_store,
)
from chat_relay.translation.cache import TranslationCache
from chat_relay.translation.dispatcher import RateLimitedDispatcher
from chat_relay.translation.languages import LanguageResolver, normalize_language
from chat_relay.translation.providers import build_providers
from chat_relay.translation.providers.base import TranslationProvider
from chat_relay.translation.suspension import ProviderSuspensions
from chat_relay.translation.worker import TranslationWorker

logger = logging.getLogger(__name__)


class TranslatorPlugin:
    """Wires the translation pipeline into a ``GameHost``.

    Args:
        host:         The host to attach to.
        config:       Pre-loaded configuration. Loaded with ``load_config``
                      on enable when omitted.
        config_path:  INI file for ``load_config`` (ignored with ``config``).
        formatter:    Chat-formatting collaborator. Defaults to a
                      ``DisplayFormatter`` sending through the host.
        placeholders: Placeholder collaborator applied before translation.
        providers:    Provider chain override; built from config otherwise.
        store:        Preference store override; built from config otherwise.
        strict:       Raise ``ConfigError`` instead of staying inactive.
    """

    def __init__(
        self,
        host: GameHost,
        config: RelayConfig | None = None,
        *,
        config_path: str | Path | None = None,
        formatter: ChatFormatter | None = None,
        placeholders: PlaceholderResolver | None = None,
        providers: Sequence[TranslationProvider] | None = None,
        store: PreferenceStore | None = None,
        strict: bool = False,
    ) -> None:
        self.host = host
        self.config = config
        self._config_path = config_path
        self._formatter = formatter
        self._placeholders = placeholders
        self._provider_override = list(providers) if providers is not None else None
        self._store_override = store
        self._strict = strict

        self.languages: PlayerLanguages | None = None
        self.cache: TranslationCache | None = None
        self.dispatcher: RateLimitedDispatcher | None = None
        self.worker: TranslationWorker | None = None
        self.scheduler: DeliveryScheduler | None = None
        self.rate_limiter: PlayerRateLimiter | None = None
        self.interceptor: ChatInterceptor | None = None
        self._teardown: list[Callable[[], None]] = []
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def enable(self) -> bool:
        """Build the pipeline and attach it to the host.

        Returns:
            ``True`` if translation is now active, ``False`` if configuration
            disabled it or was invalid (see the log).

        Raises:
            ConfigError: Only with ``strict=True``.
        """
        if self._active:
            return True

        try:
            cfg = self.config if self.config is not None else load_config(self._config_path)
        except ConfigError as exc:
            return self._reject([str(exc)])

        result = validate_config(cfg)
        for warning in result.warnings:
            logger.warning("Config: %s", warning)
        if not result.is_valid:
            return self._reject(result.errors)
        self.config = cfg

        if not cfg.translation.enabled:
            logger.info("Chat translation disabled by configuration")
            return False

        languages = self._open_languages(cfg)
        resolver = LanguageResolver(
            languages,
            cfg.translation.default_language,
            locale_lookup=self.host.locale_of,
        )
        cache = TranslationCache(cfg.cache.capacity, cfg.cache.ttl_seconds)
        suspensions = ProviderSuspensions(cfg.dispatch.suspension_seconds)
        providers = (
            self._provider_override
            if self._provider_override is not None
            else build_providers(cfg, suspensions=suspensions)
        )
        dispatcher = RateLimitedDispatcher(providers, cache, cfg.dispatch, suspensions=suspensions)
        formatter = self._formatter or DisplayFormatter(self.host.send_message, cfg.display)
        scheduler = DeliveryScheduler(
            formatter.deliver,
            buffer_depth=cfg.delivery.buffer_depth,
            buffer_timeout=cfg.delivery.buffer_timeout_seconds,
        )
        rate_limiter = PlayerRateLimiter(cfg.rate_limit.messages, cfg.rate_limit.window_seconds)

        worker = TranslationWorker()
        worker.start()

        interceptor = ChatInterceptor(
            resolver=resolver,
            dispatcher=dispatcher,
            worker=worker,
            scheduler=scheduler,
            main=self.host.main,
            placeholders=self._placeholders,
            rate_limiter=rate_limiter,
            min_message_length=cfg.translation.min_message_length,
            is_online=self.host.is_online,
        )
        interceptor.attach(self.host.bus)

        self.languages = languages
        self.cache = cache
        self.dispatcher = dispatcher
        self.worker = worker
        self.scheduler = scheduler
        self.rate_limiter = rate_limiter
        self.interceptor = interceptor

        bus = self.host.bus
        self._teardown = [
            bus.on(Events.PLAYER_JOINED, self._on_player_joined),
            bus.on(Events.PLAYER_LEFT, self._on_player_left),
            bus.on(Events.SERVER_STOPPING, self._on_server_stopping),
            self.host.main.add_tick_hook(scheduler.tick),
        ]
        self._active = True

        logger.info(
            "Chat translation enabled (providers: %s, storage: %s, default language: %s)",
            ", ".join(p.name for p in providers) or "none",
            cfg.storage.type,
            resolver.default_language,
        )
        return True

    def _reject(self, errors: list[str]) -> bool:
        if self._strict:
            raise ConfigError("; ".join(errors))
        for error in errors:
            logger.error("Config: %s", error)
        logger.error("Chat translation inactive; messages will pass through untranslated")
        return False

    def _open_languages(self, cfg: RelayConfig) -> PlayerLanguages:
        """Open the preference store, degrading to memory if it is unusable."""
        try:
            store = self._store_override or build_store(cfg.storage)
            languages = PlayerLanguages(store)
            languages.load()
        except StorageError as exc:
            if self._strict:
                raise ConfigError(f"[storage] {exc}") from exc
            logger.error("Preference store unavailable (%s); preferences will not persist", exc)
            languages = PlayerLanguages(MemoryPreferenceStore())
        return languages

    def disable(self) -> None:
        """Detach from the host and stop the worker. Safe to call twice."""
        if not self._active:
            return
        self._active = False

        if self.interceptor is None or self.worker is None or self.dispatcher is None:
            raise RuntimeError("translator plugin is active without a pipeline")
        self.interceptor.close()
        for undo in self._teardown:
            undo()
        self._teardown = []

        self.worker.stop(self.dispatcher.aclose())
        if self.scheduler is not None:
            self.scheduler.close()
        if self.languages is not None:
            try:
                self.languages.close()
            except StorageError as exc:
                logger.error("Error closing preference store: %s", exc)
        logger.info("Chat translation disabled")

    # =========================================================================
    # HOST EVENTS
    # =========================================================================

    def _on_player_joined(self, event: HostEvent) -> None:
        # The client locale wins on every join; a join without one keeps the stored choice.
        player_id = event.detail["player_id"]
        locale = normalize_language(event.detail.get("locale"))
        if self.languages is None or locale is None or self.languages.get(player_id) == locale:
            return
        try:
            self.set_player_language(player_id, locale)
        except StorageError as exc:
            logger.warning("Could not save language for %s: %s", player_id, exc)

    def _on_player_left(self, event: HostEvent) -> None:
        player_id = event.detail["player_id"]
        if self.scheduler is not None:
            self.scheduler.drop_recipient(player_id)
        if self.rate_limiter is not None:
            self.rate_limiter.forget(player_id)

    def _on_server_stopping(self, event: HostEvent) -> None:
        logger.info("Server stopping (%s)", event.detail.get("reason", "unknown"))
        self.disable()

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def set_player_language(self, player_id: str, language: str) -> str:
        """Set and persist a player's preferred language.

        Returns:
            The normalized language code.

        Raises:
            RuntimeError: If the plugin is not enabled.
            ValueError:   If ``language`` is not a language code.
            StorageError: If the preference could not be saved.
        """
        if self.languages is None or not self._active:
            raise RuntimeError("translator plugin is not enabled")
        code = self.languages.set(player_id, language)
        logger.info("Language for %s set to %s", player_id, code)
        self.host.bus.emit(
            Events.PLAYER_LANGUAGE_CHANGED,
            {"player_id": player_id, "language": code},
            source="chat_relay",
        )
        return code

    def clear_cache(self) -> int:
        """Drop every cached translation. Returns how many were dropped."""
        if self.cache is None:
            return 0
        dropped = len(self.cache)
        self.cache.clear()
        return dropped

    def status(self) -> dict:
        """Snapshot of configuration and pipeline counters."""
        status: dict = {"active": self._active}
        if self.config is not None:
            status["config"] = get_config_status(self.config)
        if not self._active:
            return status
        if (
            self.cache is None
            or self.dispatcher is None
            or self.scheduler is None
            or self.interceptor is None
        ):
            raise RuntimeError("translator plugin is active without a pipeline")
        status.update(
            {
                "cache": self.cache.stats(),
                "dispatcher": self.dispatcher.stats(),
                "scheduler": self.scheduler.stats(),
                "interceptor": self.interceptor.stats(),
                "players_with_language": len(self.languages) if self.languages is not None else 0,
            }
        )
        return status
