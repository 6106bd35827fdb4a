"""Chat interception: from a host chat event to delivery tickets.

``ChatInterceptor.on_chat`` runs inside the host's ``chat:submitted``
handler, on the main context, and must return without waiting on the
network. For each event it:

1. resolves placeholders in the text (before translation);
2. leaves the sender alone: their own view is the host's default delivery;
3. resolves the source language and each recipient's target language;
4. marks as *passthrough* recipients who already read the source
   language, all recipients of too-short lines, and all recipients when
   the sender is over their translation allowance;
5. groups the remaining recipients by target language, one
   ``TranslationKey`` per group;
6. withholds every recipient it takes over from the host's default
   delivery and reserves their ordering slot in the scheduler;
7. submits one job to the translation worker and returns.

When the job finishes, the worker thread marshals the outcomes back with
``MainContext.call_soon``. On the main context each recipient gets a
``DeliveryTicket``: the translation, or the original text if the
dispatcher answered ``Overloaded`` or ``TranslationFailed``. Chat is never
dropped because a translation failed.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial

from chat_relay.host.bus import HostBus, HostEvent, Unsubscribe
from chat_relay.host.events import ChatDelivery, ChatEvent, Events
from chat_relay.host.main_context import MainContext
from chat_relay.relay.formatting import NoPlaceholders, PlaceholderResolver
from chat_relay.relay.rate_limit import PlayerRateLimiter
from chat_relay.relay.scheduler import DeliveryOutcome, DeliveryScheduler, DeliveryTicket
from chat_relay.translation.cache import TranslationKey, normalize_text
from chat_relay.translation.dispatcher import RateLimitedDispatcher
from chat_relay.translation.errors import Overloaded, TranslationFailed
from chat_relay.translation.languages import LanguageResolver
from chat_relay.translation.worker import TranslationWorker, WorkerNotRunning

logger = logging.getLogger(__name__)

# Per target language: translated text, or the exception that replaced it.
Outcomes = dict[str, "str | BaseException"]


@dataclass
class _ChatJob:
    """Everything the completion step needs about one intercepted line."""

    chat: ChatEvent
    source_language: str
    groups: dict[str, list[str]]
    keys: dict[str, TranslationKey] = field(default_factory=dict)


class ChatInterceptor:
    """Turns ``chat:submitted`` events into ordered translated deliveries.

    Args:
        resolver:           Source/target language resolution.
        dispatcher:         Coalescing dispatcher (lives on the worker loop).
        worker:             Worker running the dispatcher's loop.
        scheduler:          Per-recipient ordered delivery.
        main:               The host's main context.
        placeholders:       Token resolver applied before translation.
        rate_limiter:       Per-sender translation allowance.
        min_message_length: Shorter lines are never translated.
        is_online:          Presence check; tickets for offline players are
                            discarded.
    """

    def __init__(
        self,
        *,
        resolver: LanguageResolver,
        dispatcher: RateLimitedDispatcher,
        worker: TranslationWorker,
        scheduler: DeliveryScheduler,
        main: MainContext,
        placeholders: PlaceholderResolver | None = None,
        rate_limiter: PlayerRateLimiter | None = None,
        min_message_length: int = 3,
        is_online: Callable[[str], bool] | None = None,
    ) -> None:
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._worker = worker
        self._scheduler = scheduler
        self._main = main
        self._placeholders = placeholders or NoPlaceholders()
        self._rate_limiter = rate_limiter or PlayerRateLimiter(0, 0)
        self._min_length = min_message_length
        self._is_online = is_online
        self._unsubscribe: Unsubscribe | None = None
        self._closed = False
        self.in_flight = 0
        self._counts = {"translated": 0, "fallback": 0, "passthrough": 0, "stale": 0}

    # ── Subscription ──────────────────────────────────────────────────────────

    def attach(self, bus: HostBus) -> None:
        self.detach()
        self._unsubscribe = bus.on(Events.CHAT_SUBMITTED, self.on_chat)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def close(self) -> None:
        """Stop intercepting. Results that arrive later are discarded."""
        self._closed = True
        self.detach()

    # ── Interception (main context) ───────────────────────────────────────────

    def on_chat(self, event: HostEvent) -> None:
        self.handle(event.detail["chat"], event.detail["delivery"])

    def handle(self, chat: ChatEvent, delivery: ChatDelivery) -> None:
        """Plan delivery for one chat line. Never blocks."""
        if self._closed:
            return

        recipients = [pid for pid in dict.fromkeys(chat.recipient_ids) if pid != chat.sender_id]
        if not recipients:
            return

        text = self._placeholders.resolve(chat.sender_id, chat.raw_text)
        source = self._resolver.resolve_source(chat.sender_id, text)
        translatable = len(normalize_text(text)) >= self._min_length

        groups: dict[str, list[str]] = {}
        passthrough: list[str] = []
        for recipient_id in recipients:
            target = self._resolver.resolve_target(recipient_id)
            if not translatable or target == source:
                passthrough.append(recipient_id)
            else:
                groups.setdefault(target, []).append(recipient_id)

        if groups and not self._rate_limiter.try_acquire(chat.sender_id):
            logger.debug("Sender %s over translation allowance, passing through", chat.sender_id)
            passthrough.extend(pid for ids in groups.values() for pid in ids)
            groups = {}

        # A passthrough recipient still waiting on an earlier translation
        # must not see this line first.
        queued_passthrough = [pid for pid in passthrough if self._scheduler.has_pending(pid)]
        taken = [pid for ids in groups.values() for pid in ids] + queued_passthrough
        self._counts["passthrough"] += len(passthrough)
        if not taken:
            return

        delivery.withhold(taken)
        self._scheduler.expect(chat.sequence, taken)
        for recipient_id in queued_passthrough:
            self._scheduler.submit(
                self._ticket(chat, recipient_id, DeliveryOutcome.PASSTHROUGH, source, source)
            )

        if not groups:
            return

        job = _ChatJob(chat=chat, source_language=source, groups=groups)
        job.keys = {target: TranslationKey.of(text, source, target) for target in groups}
        logger.debug(
            "Chat #%d from %s (%s): translating to %s",
            chat.sequence,
            chat.sender_id,
            source,
            ", ".join(sorted(groups)),
        )

        try:
            future = self._worker.submit(self._translate_all(job))
        except WorkerNotRunning as exc:
            self._complete(job, {target: exc for target in groups})
            return
        self.in_flight += 1
        future.add_done_callback(partial(self._on_done, job))

    # ── Translation (worker loop) ─────────────────────────────────────────────

    async def _translate_all(self, job: _ChatJob) -> Outcomes:
        targets = list(job.keys)
        results = await asyncio.gather(
            *(self._dispatcher.request_translation(job.keys[target]) for target in targets),
            return_exceptions=True,
        )
        return dict(zip(targets, results, strict=True))

    def _on_done(self, job: _ChatJob, future: concurrent.futures.Future) -> None:
        # Worker thread: only marshal, never touch delivery state here.
        if future.cancelled():
            outcomes: Outcomes = {
                target: TranslationFailed(key, "cancelled") for target, key in job.keys.items()
            }
        elif future.exception() is not None:
            exc = future.exception()
            outcomes = {target: exc for target in job.keys}  # type: ignore[misc]
        else:
            outcomes = future.result()
        if not self._main.call_soon(self._finish, job, outcomes):
            logger.debug("Main context closed; dropping results for chat #%d", job.chat.sequence)

    # ── Completion (main context) ─────────────────────────────────────────────

    def _finish(self, job: _ChatJob, outcomes: Outcomes) -> None:
        self.in_flight -= 1
        self._complete(job, outcomes)

    def _complete(self, job: _ChatJob, outcomes: Outcomes) -> None:
        chat = job.chat
        if self._closed:
            self._counts["stale"] += 1
            logger.debug("Interceptor closed; discarding results for chat #%d", chat.sequence)
            return

        for target, recipient_ids in job.groups.items():
            result = outcomes.get(target)
            if isinstance(result, str):
                outcome = DeliveryOutcome.TRANSLATED
                self._counts["translated"] += len(recipient_ids)
            else:
                outcome = DeliveryOutcome.FALLBACK
                self._counts["fallback"] += len(recipient_ids)
                self._log_fallback(chat, target, result)

            for recipient_id in recipient_ids:
                if self._is_online is not None and not self._is_online(recipient_id):
                    self._scheduler.drop_recipient(recipient_id)
                    continue
                self._scheduler.submit(
                    self._ticket(
                        chat,
                        recipient_id,
                        outcome,
                        job.source_language,
                        target,
                        translated=result if isinstance(result, str) else None,
                    )
                )

    @staticmethod
    def _ticket(
        chat: ChatEvent,
        recipient_id: str,
        outcome: DeliveryOutcome,
        source_language: str,
        target_language: str,
        *,
        translated: str | None = None,
    ) -> DeliveryTicket:
        return DeliveryTicket(
            sequence=chat.sequence,
            recipient_id=recipient_id,
            sender_id=chat.sender_id,
            text=translated if translated is not None else chat.raw_text,
            original_text=chat.raw_text,
            outcome=outcome,
            source_language=source_language,
            target_language=target_language,
        )

    @staticmethod
    def _log_fallback(chat: ChatEvent, target: str, error: object) -> None:
        if isinstance(error, Overloaded):
            logger.info("Chat #%d -> %s: overloaded, sending original", chat.sequence, target)
        elif isinstance(error, TranslationFailed):
            logger.warning(
                "Chat #%d -> %s: %s; sending original", chat.sequence, target, error.reason
            )
        else:
            logger.error(
                "Chat #%d -> %s: unexpected error %r; sending original",
                chat.sequence,
                target,
                error,
            )

    def stats(self) -> dict[str, int]:
        return {**self._counts, "in_flight": self.in_flight}
