"""Tests for the embeddable GameHost."""

import threading

import pytest

from chat_relay.host.events import Events


class TestRoster:
    @pytest.mark.unit
    def test_connect_and_disconnect_emit_events(self, host):
        seen = []
        host.bus.on(Events.PLAYER_JOINED, lambda e: seen.append(("join", e.detail)))
        host.bus.on(Events.PLAYER_LEFT, lambda e: seen.append(("left", e.detail)))

        host.connect("alice", "en_US")
        host.disconnect("alice")
        host.disconnect("alice")

        assert seen == [
            ("join", {"player_id": "alice", "locale": "en_US"}),
            ("left", {"player_id": "alice"}),
        ]
        assert not host.is_online("alice")

    @pytest.mark.unit
    def test_locale_of(self, host):
        host.connect("bruno", "fr_FR")

        assert host.locale_of("bruno") == "fr_FR"
        assert host.locale_of("ghost") is None


class TestSendMessage:
    @pytest.mark.unit
    def test_offline_player_returns_false(self, host):
        assert host.send_message("ghost", "hi") is False

    @pytest.mark.unit
    def test_must_run_on_main_context(self, host):
        host.connect("alice")
        errors = []

        def send():
            try:
                host.send_message("alice", "hi")
            except RuntimeError as exc:
                errors.append(exc)

        thread = threading.Thread(target=send)
        thread.start()
        thread.join()

        assert len(errors) == 1
        assert host.player("alice").inbox == []


class TestSubmitChat:
    @pytest.mark.unit
    def test_default_delivery_to_everyone(self, host):
        host.connect("alice")
        host.connect("bruno")

        chat = host.submit_chat("alice", "hello")

        assert chat.sequence == 1
        assert chat.recipient_ids == ("alice", "bruno")
        assert host.player("alice").inbox == ["<alice> hello"]
        assert host.player("bruno").inbox == ["<alice> hello"]

    @pytest.mark.unit
    def test_withheld_recipients_skip_default_delivery(self, host):
        host.connect("alice")
        host.connect("bruno")
        host.bus.on(Events.CHAT_SUBMITTED, lambda e: e.detail["delivery"].withhold(["bruno"]))

        host.submit_chat("alice", "hello")

        assert host.player("alice").inbox == ["<alice> hello"]
        assert host.player("bruno").inbox == []

    @pytest.mark.unit
    def test_withhold_after_seal_raises(self, host):
        captured = []
        host.bus.on(Events.CHAT_SUBMITTED, lambda e: captured.append(e.detail["delivery"]))
        host.connect("alice")

        host.submit_chat("alice", "hello")

        with pytest.raises(RuntimeError):
            captured[0].withhold(["alice"])

    @pytest.mark.unit
    def test_sequences_increase(self, host):
        host.connect("alice")

        first = host.submit_chat("alice", "one")
        second = host.submit_chat("alice", "two", recipients=["alice"])

        assert second.sequence == first.sequence + 1
        assert second.recipient_ids == ("alice",)


class TestLifecycle:
    @pytest.mark.unit
    def test_tick_emits_tick_event(self, host):
        ticks = []
        host.bus.on(Events.TICK, lambda e: ticks.append(e.detail["tick"]))

        host.tick()
        host.tick()

        assert ticks == [1, 2]

    @pytest.mark.unit
    def test_shutdown_emits_stopping_and_closes_main(self, host):
        reasons = []
        host.bus.on(Events.SERVER_STOPPING, lambda e: reasons.append(e.detail["reason"]))

        host.shutdown("maintenance")

        assert reasons == ["maintenance"]
        assert host.main.closed
