"""request_tracker_shared.worker — Status event reconciliation loop.

The worker is the only consumer of the event queue. Per iteration:

  Idle -> Receiving -> (per message) Parsing -> Applying -> Acknowledging -> Idle

  Parsing       malformed body -> acknowledge and drop, never retried
  Applying      applied / already-applied-or-missing -> acknowledge
                store failure or unexpected error -> leave on queue; the
                visibility timeout redelivers it
  Acknowledging delete failure is logged only; the redelivery is idempotent

The worker never changes a request's ``status``; it only adds history,
``notifiedAt`` and ``lastEventId``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from request_tracker_shared.errors import MessageFormatError, PersistenceError, QueueError
from request_tracker_shared.event_queue import EventQueue, ReceivedMessage
from request_tracker_shared.models import StatusChangedEvent
from request_tracker_shared.serialization import emit_structured_observability, now_z
from request_tracker_shared.store import ApplyResult, RequestStore

__all__ = [
    "BatchSummary",
    "MessageOutcome",
    "StatusEventWorker",
]

logger = logging.getLogger(__name__)

_COMPONENT = "status_worker"


class MessageOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    DISCARDED = "discarded"
    RETRY = "retry"

    @property
    def acknowledge(self) -> bool:
        return self is not MessageOutcome.RETRY


@dataclass
class BatchSummary:
    received: int = 0
    applied: int = 0
    skipped: int = 0
    discarded: int = 0
    retried: int = 0
    ack_failures: int = 0

    def record(self, outcome: MessageOutcome) -> None:
        if outcome is MessageOutcome.APPLIED:
            self.applied += 1
        elif outcome is MessageOutcome.SKIPPED:
            self.skipped += 1
        elif outcome is MessageOutcome.DISCARDED:
            self.discarded += 1
        else:
            self.retried += 1


class StatusEventWorker:
    def __init__(
        self,
        store: RequestStore,
        queue: Optional[EventQueue] = None,
        *,
        max_messages: int = 10,
        wait_time_seconds: int = 10,
        visibility_timeout_seconds: int = 30,
        receive_error_backoff_seconds: float = 1.0,
        explain_skips: bool = False,
        clock: Callable[[], str] = now_z,
    ) -> None:
        self.store = store
        self.queue = queue
        self.max_messages = max_messages
        self.wait_time_seconds = wait_time_seconds
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.receive_error_backoff_seconds = receive_error_backoff_seconds
        self.explain_skips = explain_skips
        self._clock = clock

    # ------------------------------------------------------------------
    # Per-message reconciliation (shared with the SQS-trigger Lambda)
    # ------------------------------------------------------------------

    def reconcile(self, body: str, *, message_id: str = "", receive_count: int = 1) -> MessageOutcome:
        """Parse ``body`` and apply it; returns whether to acknowledge or retry.

        ``receive_count`` is the delivery attempt reported by the queue and is
        only used for logging.
        """
        started = time.monotonic()
        try:
            event = StatusChangedEvent.from_json(body)
        except MessageFormatError as exc:
            logger.warning("[WARNING] Discarding malformed message %s: %s body=%r", message_id, exc, body)
            emit_structured_observability(
                component=_COMPONENT,
                event="event_discarded",
                error_code="message_format",
                extra={"message_id": message_id, "reason": str(exc)},
            )
            return MessageOutcome.DISCARDED

        try:
            result = self.store.apply_event_idempotent(event.request_id, event, self._clock())
        except PersistenceError as exc:
            logger.error(
                "[ERROR] apply failed eventId=%s requestId=%s attempt=%d: %s",
                event.event_id,
                event.request_id,
                receive_count,
                exc,
            )
            self._emit_retry(event, message_id, receive_count, started, "store_error")
            return MessageOutcome.RETRY
        except Exception:
            logger.exception(
                "[ERROR] Unexpected apply failure eventId=%s requestId=%s attempt=%d",
                event.event_id,
                event.request_id,
                receive_count,
            )
            self._emit_retry(event, message_id, receive_count, started, "unexpected_error")
            return MessageOutcome.RETRY

        if result is ApplyResult.APPLIED:
            logger.info(
                "[INFO] processed eventId=%s requestId=%s newStatus=%s",
                event.event_id,
                event.request_id,
                event.new_status,
            )
            emit_structured_observability(
                component=_COMPONENT,
                event="event_applied",
                request_id=event.request_id,
                event_id=event.event_id,
                latency_ms=int((time.monotonic() - started) * 1000),
                extra={"message_id": message_id, "new_status": event.new_status},
            )
            return MessageOutcome.APPLIED

        extra = {"message_id": message_id}
        if self.explain_skips:
            extra["cause"] = self._explain_skip(event)
        logger.info(
            "[INFO] skipped eventId=%s requestId=%s (already applied or request missing)",
            event.event_id,
            event.request_id,
        )
        emit_structured_observability(
            component=_COMPONENT,
            event="event_skipped",
            request_id=event.request_id,
            event_id=event.event_id,
            latency_ms=int((time.monotonic() - started) * 1000),
            extra=extra,
        )
        return MessageOutcome.SKIPPED

    def _explain_skip(self, event: StatusChangedEvent) -> str:
        try:
            return self.store.explain_skip(event.request_id, event.event_id).value
        except PersistenceError as exc:
            logger.warning("[WARNING] Could not explain skip for %s: %s", event.event_id, exc)
            return "unknown"

    def _emit_retry(
        self,
        event: StatusChangedEvent,
        message_id: str,
        receive_count: int,
        started: float,
        error_code: str,
    ) -> None:
        emit_structured_observability(
            component=_COMPONENT,
            event="event_retry",
            request_id=event.request_id,
            event_id=event.event_id,
            latency_ms=int((time.monotonic() - started) * 1000),
            error_code=error_code,
            extra={"message_id": message_id, "receive_count": receive_count},
        )

    # ------------------------------------------------------------------
    # Queue loop
    # ------------------------------------------------------------------

    def _require_queue(self) -> EventQueue:
        if self.queue is None:
            raise RuntimeError("StatusEventWorker was built without an event queue")
        return self.queue

    def acknowledge(self, message: ReceivedMessage) -> bool:
        """Delete ``message``; returns False if the delete failed."""
        try:
            self._require_queue().delete(message.receipt_handle)
        except QueueError as exc:
            logger.error("[ERROR] delete error messageId=%s: %s", message.message_id, exc)
            emit_structured_observability(
                component=_COMPONENT,
                event="ack_failed",
                error_code="delete_failed",
                extra={"message_id": message.message_id},
            )
            return False
        return True

    def process_message(self, message: ReceivedMessage, summary: BatchSummary) -> MessageOutcome:
        """Reconcile one delivery, delete it unless it must be retried, and tally it."""
        outcome = self.reconcile(
            message.body,
            message_id=message.message_id,
            receive_count=message.receive_count,
        )
        summary.record(outcome)
        if outcome.acknowledge and not self.acknowledge(message):
            summary.ack_failures += 1
        return outcome

    def run_once(self) -> BatchSummary:
        """Receive one batch and process every message in it.

        Raises ``QueueError`` when the receive itself fails.
        """
        queue = self._require_queue()
        messages = queue.receive_batch(
            self.max_messages,
            self.wait_time_seconds,
            self.visibility_timeout_seconds,
        )
        summary = BatchSummary(received=len(messages))
        for message in messages:
            self.process_message(message, summary)
        if messages:
            logger.info(
                "[INFO] batch received=%d applied=%d skipped=%d discarded=%d retried=%d ack_failures=%d",
                summary.received,
                summary.applied,
                summary.skipped,
                summary.discarded,
                summary.retried,
                summary.ack_failures,
            )
        return summary

    def run(self, stop_event: threading.Event) -> None:
        """Poll until ``stop_event`` is set.

        Setting the event stops new receives; the batch in hand is finished
        first. Empty receives loop straight back without backoff.
        """
        queue = self._require_queue()
        logger.info("[START] status worker polling queue=%s", queue.queue_url)
        while not stop_event.is_set():
            try:
                self.run_once()
            except QueueError as exc:
                logger.error("[ERROR] receive error: %s", exc)
                stop_event.wait(self.receive_error_backoff_seconds)
        logger.info("[END] status worker stopped")
