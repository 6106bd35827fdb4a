"""
Host event bus.

The game host publishes what happens (a chat line was submitted, a player
joined, a tick elapsed) on a ``HostBus``; the relay subscribes and reacts.

=============================================================================
PRINCIPLES
=============================================================================

1. THE BUS RECORDS FACTS
   - Events are past tense: "chat:submitted" means the line was sent
   - The bus does not decide outcomes, it records them

2. EVENTS ARE IMMUTABLE
   - ``HostEvent`` is frozen; handlers receive it, they cannot replace it
   - Payload objects carried in ``detail`` define their own mutability
     rules (``ChatDelivery`` may only be changed during dispatch)

3. EMIT IS SYNCHRONOUS
   - Sequence assignment, log commit and handler calls all happen inside
     ``emit`` on the caller's thread (the host's main context)
   - A handler that needs slow work hands it off and returns

4. HANDLER FAILURES ARE CONTAINED
   - An exception in one handler is logged and the next handler still runs

One bus per host. There is no module-level instance: the host owns it and
passes it to whoever needs to subscribe.

=============================================================================
USAGE
=============================================================================

    bus = HostBus()

    def on_join(event):
        print(f"{event.detail['player_id']} joined")

    unsubscribe = bus.on(Events.PLAYER_JOINED, on_join)
    bus.emit(Events.PLAYER_JOINED, {"player_id": "alice", "locale": "en_US"})
    unsubscribe()

=============================================================================
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


# =============================================================================
# TYPE ALIASES
# =============================================================================

# A handler takes an event and returns nothing
EventHandler = Callable[["HostEvent"], None]

# An unsubscribe function takes no args and returns nothing
Unsubscribe = Callable[[], None]


# =============================================================================
# EVENT
# =============================================================================


@dataclass(frozen=True)
class EventMetadata:
    """
    Metadata attached to every event.

    Attributes:
        timestamp: Unix epoch milliseconds (UTC). For display, NOT ordering.
        source:    Component that emitted the event ("host", "relay").
        sequence:  Monotonically increasing per bus. The only reliable order.
    """

    timestamp: int
    source: str
    sequence: int

    @staticmethod
    def create(source: str, sequence: int) -> EventMetadata:
        now_ms = int(datetime.now(UTC).timestamp() * 1000)
        return EventMetadata(timestamp=now_ms, source=source, sequence=sequence)


@dataclass(frozen=True)
class HostEvent:
    """
    A single event on the bus.

    Attributes:
        type:   "domain:action" string, see ``Events``.
        detail: Event payload.
        meta:   Timestamp, source and sequence.
    """

    type: str
    detail: dict = field(default_factory=dict)
    meta: EventMetadata | None = None

    def __str__(self) -> str:
        if self.meta:
            return (
                f"HostEvent(type='{self.type}', "
                f"source='{self.meta.source}', "
                f"seq={self.meta.sequence})"
            )
        return f"HostEvent(type='{self.type}')"


# =============================================================================
# BUS
# =============================================================================


class HostBus:
    """
    Synchronous publish/subscribe bus for host events.

    Thread Safety:
    - NOT thread-safe. ``emit`` and ``on`` must be called from the host's
      main context. Work that completes elsewhere comes back through
      ``MainContext.call_soon`` before touching the bus.

    Key Methods:
    - emit(): Record an event and call handlers (returns committed event)
    - on():   Subscribe to an event type (returns unsubscribe function)
    - once(): Subscribe for a single event only
    - get_event_log(): Retrieve recent history (debugging)
    """

    def __init__(self, *, log_size: int = 1000) -> None:
        # Maps event_type -> handlers, in registration order
        self._handlers: dict[str, list[EventHandler]] = {}

        # Bounded history for debugging
        self._event_log: deque[HostEvent] = deque(maxlen=log_size)

        self._sequence: int = 0

        # When True, logs every emit/subscribe/unsubscribe
        self.debug: bool = False

    # =========================================================================
    # EMIT
    # =========================================================================

    def emit(
        self, event_type: str, detail: dict[str, Any] | None = None, source: str = "host"
    ) -> HostEvent:
        """
        Emit an event.

        When this returns the event has a sequence number, is in the log,
        and every handler has been called.

        Args:
            event_type: The type of event (e.g., "chat:submitted")
            detail:     The event payload. Defaults to an empty dict.
            source:     Which component is emitting.

        Returns:
            The committed HostEvent.
        """
        self._sequence += 1
        event = HostEvent(
            type=event_type,
            detail=detail if detail is not None else {},
            meta=EventMetadata.create(source, self._sequence),
        )
        self._event_log.append(event)

        if self.debug:
            logger.debug("EMIT [%d]: %s from %s", self._sequence, event.type, source)

        self._notify_handlers(event)
        return event

    def _notify_handlers(self, event: HostEvent) -> None:
        # Copy: a handler may unsubscribe itself (once()).
        for handler in list(self._handlers.get(event.type, ())):
            try:
                handler(event)
            except Exception as e:
                # The event is committed regardless of handler errors
                logger.error("Handler error for '%s': %s", event.type, e, exc_info=True)

    # =========================================================================
    # SUBSCRIBE
    # =========================================================================

    def on(self, event_type: str, handler: EventHandler) -> Unsubscribe:
        """
        Subscribe to an event type.

        Args:
            event_type: The event type to listen for
            handler:    Called with the HostEvent, on the emitting thread

        Returns:
            An unsubscribe function. Calling it twice is harmless.
        """
        self._handlers.setdefault(event_type, []).append(handler)

        if self.debug:
            count = len(self._handlers[event_type])
            logger.debug("SUBSCRIBE: '%s' (total handlers: %d)", event_type, count)

        def unsubscribe() -> None:
            """Remove this handler from the subscription list."""
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                # Handler already removed, ignore
                return
            if self.debug:
                logger.debug("UNSUBSCRIBE: '%s'", event_type)

        return unsubscribe

    def once(self, event_type: str, handler: EventHandler) -> Unsubscribe:
        """Subscribe for the next event of ``event_type`` only."""
        unsub: Unsubscribe | None = None

        def one_time_wrapper(event: HostEvent) -> None:
            try:
                handler(event)
            finally:
                if unsub is not None:
                    unsub()

        unsub = self.on(event_type, one_time_wrapper)
        return unsub

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_event_log(self, limit: int | None = None) -> list[HostEvent]:
        """Events in chronological order, optionally only the last ``limit``."""
        if limit is not None:
            return list(self._event_log)[-limit:]
        return list(self._event_log)

    def get_sequence(self) -> int:
        return self._sequence

    def get_handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, ()))

    def clear(self) -> None:
        """Drop every handler and the event log."""
        self._handlers.clear()
        self._event_log.clear()
