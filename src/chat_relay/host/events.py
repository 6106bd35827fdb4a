"""
Event types and payloads the game host publishes.

=============================================================================
NAMING CONVENTION
=============================================================================

Events use "domain:action" format in PAST TENSE:

    Good: "player:joined", "chat:submitted"
    Bad:  "player:join", "send_chat"

The past tense emphasizes that events record FACTS about what HAPPENED.
Exception: "tick" doesn't use past tense because it's a continuous concept.

=============================================================================
USAGE
=============================================================================

    from chat_relay.host.events import Events

    bus.on(Events.CHAT_SUBMITTED, interceptor.on_chat)

=============================================================================
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field


class Events:
    """All event types the relay subscribes to or emits."""

    # =========================================================================
    # CHAT
    # =========================================================================

    CHAT_SUBMITTED = "chat:submitted"
    """
    A player sent a chat line. Emitted on the main context before the host
    performs its default delivery, so handlers may withhold recipients.

    Detail: {"chat": ChatEvent, "delivery": ChatDelivery}
    """

    # =========================================================================
    # PLAYER LIFECYCLE
    # =========================================================================

    PLAYER_JOINED = "player:joined"
    """
    Detail: {"player_id": str, "locale": str | None}
    """

    PLAYER_LEFT = "player:left"
    """
    Detail: {"player_id": str}
    """

    PLAYER_LANGUAGE_CHANGED = "player:language_changed"
    """
    Emitted by the relay after a player's language preference changes.

    Detail: {"player_id": str, "language": str | None}
    """

    # =========================================================================
    # SERVER
    # =========================================================================

    SERVER_STOPPING = "server:stopping"
    """
    Detail: {"reason": str}
    """

    TICK = "tick"
    """
    Detail: {"tick": int}
    """


def get_all_event_types() -> list[str]:
    """Every event type string defined on ``Events``."""
    return [
        value
        for name, value in vars(Events).items()
        if name.isupper() and isinstance(value, str)
    ]


# =============================================================================
# CHAT PAYLOADS
# =============================================================================


@dataclass(frozen=True)
class ChatEvent:
    """Immutable snapshot of one chat action.

    Attributes:
        sender_id:     Player who typed the line.
        raw_text:      Text as typed.
        recipient_ids: Everyone who would see the line, in host order.
                       May include the sender.
        sequence:      Server-assigned chat sequence number. Strictly
                       increasing for the lifetime of the host.
    """

    sender_id: str
    raw_text: str
    recipient_ids: tuple[str, ...]
    sequence: int


@dataclass
class ChatDelivery:
    """The host's default (untranslated) delivery plan for a ``ChatEvent``.

    Handlers of ``Events.CHAT_SUBMITTED`` may remove recipients from the
    default audience with ``withhold``. Once the handlers have run the host
    seals the plan and delivers the original text to ``audience``.
    """

    recipients: tuple[str, ...]
    _withheld: set[str] = field(default_factory=set)
    _sealed: bool = False

    def withhold(self, player_ids: Iterable[str]) -> None:
        """Take ``player_ids`` out of the default delivery.

        Raises:
            RuntimeError: If called after the host sealed the plan, i.e.
                outside the synchronous event handler.
        """
        if self._sealed:
            raise RuntimeError("chat delivery already sealed; withhold() must run in the handler")
        self._withheld.update(player_ids)

    def seal(self) -> None:
        self._sealed = True

    @property
    def withheld(self) -> frozenset[str]:
        return frozenset(self._withheld)

    @property
    def audience(self) -> tuple[str, ...]:
        """Recipients that still get the original text from the host."""
        return tuple(pid for pid in self.recipients if pid not in self._withheld)
