"""Per-recipient ordered delivery on the main context.

Translations finish in whatever order the provider answers. Players must
still read a sender's lines in the order they were typed, so every ticket
goes through ``DeliveryScheduler`` before it reaches the formatter.

How ordering works
------------------
When the interceptor takes a recipient over for chat ``#n`` it calls
``expect(n, [recipient])`` on the main context, reserving a slot. Each
recipient therefore has an ordered list of reserved sequence numbers.

* A ticket for the **head** reservation is applied at once, followed by any
  buffered tickets that are now at the head.
* A ticket for a **later** reservation is buffered.
* If the buffer grows past ``buffer_depth``, or its oldest ticket has
  waited ``buffer_timeout`` seconds (checked every ``tick()``), the buffer
  is flushed in sequence order with ``PENDING_NOTE`` attached. The skipped
  reservations become *overdue*; their tickets are applied as soon as they
  arrive, with ``LATE_NOTE``.
* Tickets for recipients that left, or for sequence numbers that were
  never reserved (or already delivered), are discarded silently.

Every method must be called on the main context; there is no locking.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from chat_relay.translation.errors import StaleEvent

logger = logging.getLogger(__name__)

PENDING_NOTE = "an earlier message is still being translated"
LATE_NOTE = "delayed by translation"


class DeliveryOutcome(Enum):
    TRANSLATED = "translated"
    PASSTHROUGH = "passthrough"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class DeliveryTicket:
    """What one recipient should see for one chat line.

    Attributes:
        sequence:        Chat sequence number the ticket belongs to.
        recipient_id:    Player the ticket is for.
        sender_id:       Player who typed the line.
        text:            Text to show (translated, or the original).
        original_text:   The line as typed.
        outcome:         Why ``text`` is what it is.
        source_language: Resolved source language.
        target_language: Recipient's language.
        note:            Ordering notice added by the scheduler, if any.
    """

    sequence: int
    recipient_id: str
    sender_id: str
    text: str
    original_text: str
    outcome: DeliveryOutcome
    source_language: str
    target_language: str
    note: str | None = None

    def with_note(self, note: str) -> DeliveryTicket:
        return replace(self, note=note)


@dataclass
class _RecipientState:
    expected: deque[int] = field(default_factory=deque)
    buffered: dict[int, tuple[DeliveryTicket, float]] = field(default_factory=dict)
    overdue: set[int] = field(default_factory=set)

    @property
    def idle(self) -> bool:
        return not (self.expected or self.buffered or self.overdue)


class DeliveryScheduler:
    """Applies ``DeliveryTicket``s per recipient in sequence order.

    Args:
        deliver:        Called with each ticket, in order. Usually the
                        formatting collaborator's ``deliver``.
        buffer_depth:   Max out-of-order tickets held per recipient.
        buffer_timeout: Max seconds a ticket may wait for predecessors.
        clock:          Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        deliver: Callable[[DeliveryTicket], None],
        *,
        buffer_depth: int,
        buffer_timeout: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._deliver = deliver
        self.buffer_depth = buffer_depth
        self.buffer_timeout = buffer_timeout
        self._clock = clock
        self._states: dict[str, _RecipientState] = {}
        self._closed = False
        self._counts = {"delivered": 0, "flushed": 0, "late": 0, "discarded": 0}

    # ── Reservations ──────────────────────────────────────────────────────────

    def expect(self, sequence: int, recipient_ids: Iterable[str]) -> None:
        """Reserve an ordering slot for ``sequence`` for each recipient.

        Raises:
            ValueError: If ``sequence`` is not greater than the recipient's
                last reservation.
        """
        if self._closed:
            return
        for recipient_id in recipient_ids:
            state = self._states.setdefault(recipient_id, _RecipientState())
            if state.expected and sequence <= state.expected[-1]:
                raise ValueError(
                    f"sequence {sequence} reserved out of order for {recipient_id} "
                    f"(last {state.expected[-1]})"
                )
            state.expected.append(sequence)

    def has_pending(self, recipient_id: str) -> bool:
        """Whether ``recipient_id`` has reserved slots not yet delivered."""
        state = self._states.get(recipient_id)
        return state is not None and bool(state.expected)

    # ── Tickets ───────────────────────────────────────────────────────────────

    def submit(self, ticket: DeliveryTicket) -> bool:
        """Hand a completed ticket to the scheduler.

        Returns:
            ``True`` if the ticket was applied or buffered, ``False`` if it
            was discarded as stale.
        """
        try:
            self._accept(ticket)
        except StaleEvent as exc:
            self._counts["discarded"] += 1
            logger.debug("Discarding ticket: %s", exc)
            return False
        return True

    def _accept(self, ticket: DeliveryTicket) -> None:
        if self._closed:
            raise StaleEvent("scheduler is closed")
        state = self._states.get(ticket.recipient_id)
        if state is None:
            raise StaleEvent(f"no reservations for {ticket.recipient_id}")

        seq = ticket.sequence
        if seq in state.overdue:
            state.overdue.discard(seq)
            self._counts["late"] += 1
            self._apply(ticket.with_note(LATE_NOTE))
            self._forget_if_idle(ticket.recipient_id, state)
            return

        if seq not in state.expected or seq in state.buffered:
            raise StaleEvent(f"sequence {seq} not reserved for {ticket.recipient_id}")

        if state.expected[0] == seq:
            state.expected.popleft()
            self._apply(ticket)
            self._release(state)
        else:
            state.buffered[seq] = (ticket, self._clock())
            if len(state.buffered) > self.buffer_depth:
                logger.debug("Buffer for %s over depth, flushing", ticket.recipient_id)
                self._flush(state)
        self._forget_if_idle(ticket.recipient_id, state)

    def _release(self, state: _RecipientState) -> None:
        while state.expected and state.expected[0] in state.buffered:
            ticket, _ = state.buffered.pop(state.expected.popleft())
            self._apply(ticket)

    def _flush(self, state: _RecipientState) -> None:
        # Deliver buffered tickets in order; reservations still waiting on a
        # translation are skipped and marked overdue.
        while state.buffered:
            seq = state.expected.popleft()
            entry = state.buffered.pop(seq, None)
            if entry is None:
                state.overdue.add(seq)
                continue
            self._counts["flushed"] += 1
            self._apply(entry[0].with_note(PENDING_NOTE))

    def _apply(self, ticket: DeliveryTicket) -> None:
        self._counts["delivered"] += 1
        try:
            self._deliver(ticket)
        except Exception as e:
            # Ordering state has already advanced past this ticket.
            logger.error(
                "Delivering chat #%d to %s failed: %s",
                ticket.sequence,
                ticket.recipient_id,
                e,
                exc_info=True,
            )

    def _forget_if_idle(self, recipient_id: str, state: _RecipientState) -> None:
        if state.idle:
            self._states.pop(recipient_id, None)

    # ── Timers / lifecycle ────────────────────────────────────────────────────

    def tick(self) -> int:
        """Flush buffers whose oldest ticket exceeded ``buffer_timeout``.

        Returns:
            Number of recipients whose buffer was flushed.
        """
        now = self._clock()
        flushed = 0
        for recipient_id, state in list(self._states.items()):
            if not state.buffered:
                continue
            oldest = min(buffered_at for _, buffered_at in state.buffered.values())
            if now - oldest >= self.buffer_timeout:
                logger.debug("Buffer timeout for %s, flushing", recipient_id)
                self._flush(state)
                self._forget_if_idle(recipient_id, state)
                flushed += 1
        return flushed

    def drop_recipient(self, recipient_id: str) -> int:
        """Forget a recipient (disconnected). Returns discarded ticket count."""
        state = self._states.pop(recipient_id, None)
        if state is None:
            return 0
        discarded = len(state.buffered)
        self._counts["discarded"] += discarded
        return discarded

    def close(self) -> None:
        """Discard everything; later tickets are stale."""
        self._closed = True
        for state in self._states.values():
            self._counts["discarded"] += len(state.buffered)
        self._states.clear()

    def stats(self) -> dict[str, int]:
        return {
            **self._counts,
            "recipients": len(self._states),
            "buffered": sum(len(s.buffered) for s in self._states.values()),
        }
