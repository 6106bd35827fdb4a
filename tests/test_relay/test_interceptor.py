"""
Tests for ChatInterceptor against a real worker, dispatcher and scheduler.

The host's main context is owned by the test thread; ``drain_until`` plays
the part of the game loop while the worker thread talks to a fake provider.
"""

import asyncio

import pytest

from chat_relay.config import DispatchSettings, DisplaySettings
from chat_relay.relay.formatting import DisplayFormatter, TemplatePlaceholders
from chat_relay.relay.interceptor import ChatInterceptor
from chat_relay.relay.rate_limit import PlayerRateLimiter
from chat_relay.relay.scheduler import DeliveryScheduler
from chat_relay.translation.cache import TranslationCache
from chat_relay.translation.dispatcher import RateLimitedDispatcher
from chat_relay.translation.errors import ErrorKind
from chat_relay.translation.languages import LanguageResolver
from chat_relay.translation.worker import TranslationWorker
from tests.fakes import FakeProvider, always_failing

PREFERENCES = {"alice": "en", "bruno": "fr", "chen": "fr", "dana": "en"}


class Pipeline:
    """The relay's moving parts wired to a GameHost, without the plugin."""

    def __init__(self, host, provider, *, placeholders=None, rate_limiter=None, start=True):
        self.host = host
        self.provider = provider
        self.cache = TranslationCache(100, 30.0)
        self.dispatcher = RateLimitedDispatcher(
            [provider],
            self.cache,
            DispatchSettings(timeout_seconds=1.0, backoff_base_seconds=0.01),
        )
        self.worker = TranslationWorker(name="interceptor-test")
        if start:
            self.worker.start()
        formatter = DisplayFormatter(host.send_message, DisplaySettings(mode="replace"))
        self.scheduler = DeliveryScheduler(formatter.deliver, buffer_depth=8, buffer_timeout=5.0)
        self.interceptor = ChatInterceptor(
            resolver=LanguageResolver(PREFERENCES, "en"),
            dispatcher=self.dispatcher,
            worker=self.worker,
            scheduler=self.scheduler,
            main=host.main,
            placeholders=placeholders,
            rate_limiter=rate_limiter,
            is_online=host.is_online,
        )
        self.interceptor.attach(host.bus)

    def settle(self, timeout: float = 5.0) -> bool:
        return self.host.main.drain_until(lambda: self.interceptor.in_flight == 0, timeout)

    def release(self) -> None:
        """Open the provider gate from the main thread."""
        self.worker.loop.call_soon_threadsafe(self.provider.gate.set)

    def close(self) -> None:
        self.interceptor.close()
        if self.worker.running:
            self.worker.stop(self.dispatcher.aclose())


@pytest.fixture
def make_pipeline(host):
    built = []

    def factory(provider=None, **kwargs):
        pipeline = Pipeline(host, provider or FakeProvider(), **kwargs)
        built.append(pipeline)
        return pipeline

    yield factory
    for pipeline in built:
        pipeline.close()


def gated_provider() -> FakeProvider:
    provider = FakeProvider()
    provider.gate = asyncio.Event()
    return provider


def connect(host, *players):
    for player_id in players:
        host.connect(player_id)


# =============================================================================
# ROUTING
# =============================================================================


class TestRouting:
    @pytest.mark.unit
    def test_translated_for_foreign_reader_only(self, host, make_pipeline):
        pipeline = make_pipeline()
        connect(host, "alice", "bruno", "dana")

        host.submit_chat("alice", "hello")

        # Sender and same-language readers get the host's default delivery.
        assert host.player("alice").inbox == ["<alice> hello"]
        assert host.player("dana").inbox == ["<alice> hello"]
        assert host.player("bruno").inbox == []

        assert pipeline.settle()
        assert host.player("bruno").inbox == ["<alice> [fr] hello"]
        assert host.player("alice").inbox == ["<alice> hello"]

    @pytest.mark.unit
    def test_one_provider_call_per_target_language(self, host, make_pipeline):
        pipeline = make_pipeline()
        connect(host, "alice", "bruno", "chen")

        host.submit_chat("alice", "hello")
        assert pipeline.settle()

        assert pipeline.provider.calls == [("hello", "en", "fr")]
        assert host.player("bruno").inbox == ["<alice> [fr] hello"]
        assert host.player("chen").inbox == ["<alice> [fr] hello"]

    @pytest.mark.unit
    def test_short_lines_pass_through(self, host, make_pipeline):
        pipeline = make_pipeline()
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "ok")

        assert host.player("bruno").inbox == ["<alice> ok"]
        assert pipeline.interceptor.in_flight == 0
        assert pipeline.provider.calls == []

    @pytest.mark.unit
    def test_sender_only_audience_is_ignored(self, host, make_pipeline):
        pipeline = make_pipeline()
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "hello", recipients=["alice"])

        assert host.player("alice").inbox == ["<alice> hello"]
        assert pipeline.interceptor.in_flight == 0

    @pytest.mark.unit
    def test_over_allowance_passes_through(self, host, make_pipeline, clock):
        pipeline = make_pipeline(rate_limiter=PlayerRateLimiter(1, 60.0, clock=clock))
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "hello there")
        assert pipeline.settle()
        host.submit_chat("alice", "second line")
        assert pipeline.settle()

        assert host.player("bruno").inbox == [
            "<alice> [fr] hello there",
            "<alice> second line",
        ]
        assert len(pipeline.provider.calls) == 1

    @pytest.mark.unit
    def test_placeholders_resolved_before_translation(self, host, make_pipeline):
        pipeline = make_pipeline(
            placeholders=TemplatePlaceholders({"player": lambda pid: pid.title()})
        )
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "%player% says hi")
        assert pipeline.settle()

        assert pipeline.provider.calls == [("Alice says hi", "en", "fr")]


# =============================================================================
# FAILURE HANDLING
# =============================================================================


class TestFallback:
    @pytest.mark.unit
    def test_failed_translation_delivers_original(self, host, make_pipeline, caplog):
        pipeline = make_pipeline(FakeProvider(handler=always_failing(ErrorKind.PERMANENT)))
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "hello")
        assert pipeline.settle()

        assert host.player("bruno").inbox == ["<alice> hello"]
        assert pipeline.interceptor.stats()["fallback"] == 1
        assert "sending original" in caplog.text

    @pytest.mark.unit
    def test_stopped_worker_falls_back_immediately(self, host, make_pipeline):
        pipeline = make_pipeline(start=False)
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "hello")

        assert host.player("bruno").inbox == ["<alice> hello"]
        assert pipeline.interceptor.in_flight == 0


# =============================================================================
# ORDERING
# =============================================================================


class TestOrdering:
    @pytest.mark.unit
    def test_passthrough_waits_behind_pending_translation(self, host, make_pipeline):
        pipeline = make_pipeline(gated_provider())
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "hello")
        host.submit_chat("alice", "ok")
        host.main.tick()

        assert host.player("bruno").inbox == []

        pipeline.release()
        assert pipeline.settle()

        assert host.player("bruno").inbox == ["<alice> [fr] hello", "<alice> ok"]

    @pytest.mark.unit
    def test_lines_arrive_in_typed_order(self, host, make_pipeline):
        delays = {"first line": 0.2, "second line": 0.0}

        async def handler(text, source, target):
            await asyncio.sleep(delays[text])
            return f"<{target}> {text}"

        pipeline = make_pipeline(FakeProvider(handler=handler))
        connect(host, "alice", "bruno")

        host.submit_chat("alice", "first line")
        host.submit_chat("alice", "second line")
        assert pipeline.settle()

        assert host.player("bruno").inbox == [
            "<alice> <fr> first line",
            "<alice> <fr> second line",
        ]


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:
    @pytest.mark.unit
    def test_results_after_close_are_discarded(self, host, make_pipeline):
        pipeline = make_pipeline(gated_provider())
        connect(host, "alice", "bruno")
        host.submit_chat("alice", "hello")

        pipeline.interceptor.close()
        pipeline.release()
        assert pipeline.settle()

        assert host.player("bruno").inbox == []
        assert pipeline.interceptor.stats()["stale"] == 1

    @pytest.mark.unit
    def test_closed_interceptor_ignores_chat(self, host, make_pipeline):
        pipeline = make_pipeline()
        connect(host, "alice", "bruno")
        pipeline.interceptor.close()

        host.submit_chat("alice", "hello")

        assert host.player("bruno").inbox == ["<alice> hello"]

    @pytest.mark.unit
    def test_recipient_leaving_mid_translation(self, host, make_pipeline):
        pipeline = make_pipeline(gated_provider())
        connect(host, "alice", "bruno", "chen")
        host.submit_chat("alice", "hello")

        host.disconnect("bruno")
        pipeline.release()
        assert pipeline.settle()

        assert host.player("chen").inbox == ["<alice> [fr] hello"]
        assert not pipeline.scheduler.has_pending("bruno")
