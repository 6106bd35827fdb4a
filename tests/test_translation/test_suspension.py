"""Tests for provider suspensions after HTTP 429."""

import pytest

from chat_relay.translation.suspension import ProviderSuspensions


@pytest.fixture
def suspensions(clock):
    return ProviderSuspensions(1200.0, clock=clock)


@pytest.mark.unit
def test_suspend_uses_default_period(suspensions, clock):
    suspensions.suspend("openai")

    assert suspensions.is_suspended("openai")
    assert suspensions.remaining("openai") == pytest.approx(1200.0)
    assert suspensions.active() == ["openai"]


@pytest.mark.unit
def test_suspension_expires(suspensions, clock):
    suspensions.suspend("openai", 5.0)

    clock.advance(5.0)

    assert not suspensions.is_suspended("openai")
    assert suspensions.remaining("openai") == 0.0
    assert suspensions.active() == []


@pytest.mark.unit
def test_longer_suspension_is_kept(suspensions, clock):
    suspensions.suspend("gemini", 100.0)
    suspensions.suspend("gemini", 10.0)

    clock.advance(50.0)

    assert suspensions.is_suspended("gemini")


@pytest.mark.unit
def test_other_providers_unaffected(suspensions):
    suspensions.suspend("openai")

    assert not suspensions.is_suspended("ollama")


@pytest.mark.unit
def test_clear(suspensions):
    suspensions.suspend("openai")
    suspensions.suspend("gemini")

    suspensions.clear("openai")
    assert suspensions.active() == ["gemini"]

    suspensions.clear()
    assert suspensions.active() == []
