"""Per-delivery keep/drop decision and the matching broker action.

Rules, in order:
1. A redelivered message is nacked with requeue without evaluating any pattern.
2. The effective pattern is the entry's ``regex_to_drop`` if set, else the
   table-wide ``default_regex``.
3. ``re.search`` over the body text decides: a match anywhere drops the message
   (ack), no match requeues it (nack, requeue=True). The empty pattern matches
   every body, so an empty ``default_regex`` with no override drops everything.

Nothing is ever rejected without requeue.

Examples
--------
>>> d = Delivery(body=b"order|drop", queue_name="q")
>>> decide(d, QueueEntry(queue_name="q", regex_to_drop="drop$"), "")
<Decision.DROP: 'drop'>
>>> decide(d.model_copy(update={"redelivered": True}), QueueEntry(queue_name="q"), "")
<Decision.REQUEUE_NO_EVAL: 'requeue_no_eval'>
"""
from __future__ import annotations

import logging
import re
import time
from functools import lru_cache
from typing import Optional

from aio_pika.abc import AbstractIncomingMessage
from opentelemetry.trace import Tracer  # type: ignore

from rabbit_hole.dropped_log import DroppedMessageLogger
from rabbit_hole.metrics import (
    RELAY_MESSAGE_TOTAL,
    RELAY_HANDLE_LATENCY_SECONDS,
    RELAY_HANDLE_ERRORS_TOTAL,
)
from rabbit_hole.models import Decision, Delivery, MergedConfig, QueueEntry
from rabbit_hole.tracing import delivery_span, get_tracer


log = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def effective_pattern(entry: QueueEntry, default_regex: str) -> str:
    return entry.regex_to_drop or default_regex


def decide(delivery: Delivery, entry: QueueEntry, default_regex: str) -> Decision:
    """Return the decision for one delivery without touching the broker."""
    if delivery.redelivered:
        return Decision.REQUEUE_NO_EVAL
    pattern = _compile(effective_pattern(entry, default_regex))
    if pattern.search(delivery.text):
        return Decision.DROP
    return Decision.REQUEUE


class MessageFilter:
    """Consumer callback: decides each delivery and acks or nacks it.

    Properties:
    - `config`: merged queue table (source of ``default_regex``)
    - `dropped_logger`: optional ``DroppedMessageLogger``; ``None`` disables audit files

    Failure policy: an exception while handling a delivery is logged and
    counted; if the delivery was not settled yet it is nacked with requeue so
    it does not sit unacknowledged until the channel closes. A failure after
    the ack (writing the audit file) leaves the message dropped.
    """

    def __init__(
        self,
        config: MergedConfig,
        dropped_logger: Optional[DroppedMessageLogger] = None,
        logger: logging.Logger | None = None,
        tracer: Optional[Tracer] = None,
    ) -> None:
        self.config = config
        self.dropped_logger = dropped_logger
        self.logger = logger or log
        self.tracer = tracer or get_tracer()

    async def handle(self, entry: QueueEntry, message: AbstractIncomingMessage) -> Optional[Decision]:
        """Decide and settle one delivery; returns the decision, or ``None`` on failure."""
        start_ts = time.perf_counter()
        settled = False
        try:
            with delivery_span(self.tracer, entry.queue_name, message.headers) as span:
                delivery = Delivery.from_message(message, entry.queue_name)
                decision = decide(delivery, entry, self.config.default_regex)
                span.set_attribute("decision", decision.value)

                if decision is Decision.DROP:
                    await message.ack()
                    settled = True
                    self.logger.debug("Dropped message from %s: %s", entry.queue_name, delivery.text)
                    if self.dropped_logger is not None:
                        self.dropped_logger.log(delivery)
                else:
                    await message.nack(requeue=True)
                    settled = True
                    if decision is Decision.REQUEUE_NO_EVAL:
                        self.logger.debug("Message was already redelivered. Requeued message: %s", delivery.text)
                    else:
                        self.logger.debug("Ignored message from %s: %s", entry.queue_name, delivery.text)

            RELAY_MESSAGE_TOTAL.labels(queue=entry.queue_name, decision=decision.value).inc()
            return decision
        except Exception:  # noqa: BLE001
            self.logger.exception("Error handling message from %s", entry.queue_name)
            RELAY_HANDLE_ERRORS_TOTAL.labels(queue=entry.queue_name).inc()
            if not settled:
                await self._requeue_after_error(entry, message)
            return None
        finally:
            RELAY_HANDLE_LATENCY_SECONDS.observe(time.perf_counter() - start_ts)

    async def _requeue_after_error(self, entry: QueueEntry, message: AbstractIncomingMessage) -> None:
        try:
            await message.nack(requeue=True)
        except Exception as exc:  # noqa: BLE001
            # Left unacknowledged; the broker requeues it when the channel closes
            self.logger.error("Could not requeue message from %s after error: %s", entry.queue_name, exc)
