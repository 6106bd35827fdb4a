"""Chat formatting and placeholder collaborators.

The relay never writes to a player directly. Completed tickets go to a
``ChatFormatter``, which owns the final look of the line (prefixes,
indicators, colours on real servers). Placeholder tokens in the sender's
text are resolved by a ``PlaceholderResolver`` *before* translation, so the
provider sees ``Steve`` instead of ``%player%``.

``DisplayFormatter`` is the default formatter. Its display modes:

==========  ====================================================
mode        translated line
==========  ====================================================
compact     ``<Steve> ᵀ bonjour``
replace     ``<Steve> bonjour``
separate    ``<Steve> [T] bonjour`` (prefix configurable)
custom      ``custom_format`` with ``{player_name}``,
            ``{translated_message}``, ``{original_message}``,
            ``{source_language}``, ``{target_language}``
==========  ====================================================

Untranslated lines (passthrough, fallback) use the host's plain format.
A scheduler note is appended in parentheses.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Protocol

from chat_relay.config import DisplaySettings
from chat_relay.relay.scheduler import DeliveryOutcome, DeliveryTicket

COMPACT_INDICATOR = "ᵀ"


class ChatFormatter(Protocol):
    """Final composition and delivery of a ticket. Called on the main context."""

    def deliver(self, ticket: DeliveryTicket) -> None: ...


class PlaceholderResolver(Protocol):
    """Expands dynamic tokens in a player's text."""

    def resolve(self, player_id: str, text: str) -> str: ...


class NoPlaceholders:
    """Resolver that leaves text untouched."""

    def resolve(self, player_id: str, text: str) -> str:
        return text


_TOKEN = re.compile(r"%([a-zA-Z0-9_]+)%")


class TemplatePlaceholders:
    """Expands ``%name%`` tokens from a table of per-player value functions.

    Unknown tokens are left as typed.

    Example:
        TemplatePlaceholders({"player": lambda pid: pid})
    """

    def __init__(self, values: Mapping[str, Callable[[str], str]]) -> None:
        self._values = dict(values)

    def resolve(self, player_id: str, text: str) -> str:
        def substitute(match: re.Match) -> str:
            fn = self._values.get(match.group(1).lower())
            return fn(player_id) if fn is not None else match.group(0)

        return _TOKEN.sub(substitute, text)


def plain_line(sender_id: str, text: str) -> str:
    """Untranslated chat line, same shape as the host's default delivery."""
    return f"<{sender_id}> {text}"


class DisplayFormatter:
    """Default ``ChatFormatter`` implementing the configured display mode.

    Args:
        send:     ``send(player_id, line)``, typically ``GameHost.send_message``.
        settings: Display section of the relay configuration.
    """

    def __init__(self, send: Callable[[str, str], object], settings: DisplaySettings) -> None:
        self._send = send
        self._settings = settings

    def render(self, ticket: DeliveryTicket) -> str:
        if ticket.outcome is DeliveryOutcome.TRANSLATED:
            line = self._render_translated(ticket)
        else:
            line = plain_line(ticket.sender_id, ticket.text)
        if ticket.note:
            line = f"{line} ({ticket.note})"
        return line

    def _render_translated(self, ticket: DeliveryTicket) -> str:
        mode = self._settings.mode
        head = f"<{ticket.sender_id}>"
        if mode == "replace":
            return f"{head} {ticket.text}"
        if mode == "separate":
            return f"{head} {self._settings.prefix} {ticket.text}"
        if mode == "custom":
            line = self._settings.custom_format
            for token, value in (
                ("{player_name}", ticket.sender_id),
                ("{translated_message}", ticket.text),
                ("{original_message}", ticket.original_text),
                ("{source_language}", ticket.source_language),
                ("{target_language}", ticket.target_language),
            ):
                line = line.replace(token, value)
            return line
        return f"{head} {COMPACT_INDICATOR} {ticket.text}"

    def deliver(self, ticket: DeliveryTicket) -> None:
        self._send(ticket.recipient_id, self.render(ticket))
