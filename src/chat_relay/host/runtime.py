"""Minimal embeddable game host.

``GameHost`` is the smallest thing that behaves like the server the relay is
written for: it owns the event bus and the main context, keeps a roster of
connected players, and performs default chat delivery. Real servers adapt
their own chat hook to the same shape; the CLI demo and the test suite use
this one directly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from chat_relay.host.bus import HostBus
from chat_relay.host.events import ChatDelivery, ChatEvent, Events
from chat_relay.host.main_context import MainContext

logger = logging.getLogger(__name__)


@dataclass
class Player:
    """A connected player and everything they have been shown."""

    player_id: str
    locale: str | None = None
    inbox: list[str] = field(default_factory=list)


class GameHost:
    """Single-process host with a roster, a bus and a main context.

    The constructing thread becomes the main context owner.
    """

    def __init__(self, *, bus: HostBus | None = None, main: MainContext | None = None) -> None:
        self.bus = bus or HostBus()
        self.main = main or MainContext()
        self.main.bind()
        self._players: dict[str, Player] = {}
        self._chat_sequence = 0

    # ── Roster ────────────────────────────────────────────────────────────────

    def connect(self, player_id: str, locale: str | None = None) -> Player:
        player = Player(player_id=player_id, locale=locale)
        self._players[player_id] = player
        self.bus.emit(Events.PLAYER_JOINED, {"player_id": player_id, "locale": locale})
        return player

    def disconnect(self, player_id: str) -> None:
        if self._players.pop(player_id, None) is not None:
            self.bus.emit(Events.PLAYER_LEFT, {"player_id": player_id})

    def is_online(self, player_id: str) -> bool:
        return player_id in self._players

    def online_players(self) -> list[str]:
        return list(self._players)

    def player(self, player_id: str) -> Player:
        return self._players[player_id]

    def locale_of(self, player_id: str) -> str | None:
        player = self._players.get(player_id)
        return player.locale if player else None

    def send_message(self, player_id: str, line: str) -> bool:
        """Show ``line`` to a player. Returns ``False`` if they are offline."""
        if not self.main.is_main_thread():
            raise RuntimeError("send_message must run on the main context")
        player = self._players.get(player_id)
        if player is None:
            return False
        player.inbox.append(line)
        return True

    # ── Chat ──────────────────────────────────────────────────────────────────

    @staticmethod
    def format_line(sender_id: str, text: str) -> str:
        """Default chat line format used for untranslated delivery."""
        return f"<{sender_id}> {text}"

    def submit_chat(
        self, sender_id: str, text: str, recipients: Iterable[str] | None = None
    ) -> ChatEvent:
        """Publish a chat line and deliver it to whoever was not withheld.

        Args:
            sender_id:  Player who typed the line.
            text:       Raw text.
            recipients: Audience; defaults to every online player, sender
                        included.

        Returns:
            The ``ChatEvent`` that was published.
        """
        self._chat_sequence += 1
        audience = tuple(recipients) if recipients is not None else tuple(self._players)
        chat = ChatEvent(
            sender_id=sender_id,
            raw_text=text,
            recipient_ids=audience,
            sequence=self._chat_sequence,
        )
        delivery = ChatDelivery(recipients=audience)
        self.bus.emit(Events.CHAT_SUBMITTED, {"chat": chat, "delivery": delivery})
        delivery.seal()

        line = self.format_line(sender_id, text)
        for player_id in delivery.audience:
            self.send_message(player_id, line)
        logger.debug(
            "Chat #%d from %s: %d default, %d withheld",
            chat.sequence,
            sender_id,
            len(delivery.audience),
            len(delivery.withheld),
        )
        return chat

    # ── Loop ──────────────────────────────────────────────────────────────────

    def tick(self) -> None:
        """One simulation tick: drain main-context work, then announce the tick."""
        self.main.tick()
        self.bus.emit(Events.TICK, {"tick": self.main.tick_count})

    def shutdown(self, reason: str = "shutdown") -> None:
        self.bus.emit(Events.SERVER_STOPPING, {"reason": reason})
        self.main.close()
