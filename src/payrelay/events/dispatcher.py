"""
In-process dispatcher for events that are not relayed through the outbox.

Order-side confirmations, failures and cancellations, and payment refunds,
have no outgoing message. After the owning transaction commits they are
logged and handed to any in-process subscribers. Delivery is
fire-and-forget: a failing handler is logged and never affects the
command that recorded the event.
"""

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence

from payrelay.events.base import DomainEvent
from payrelay.observability import Tracer, create_tracer
from payrelay.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
)

logger = logging.getLogger(__name__)

LocalEventHandler = Callable[[DomainEvent], Awaitable[None]]


class LocalEventDispatcher:
    """
    Dispatch events to in-process handlers.

    Example:
        >>> dispatcher = LocalEventDispatcher()
        >>> dispatcher.subscribe(PaymentConfirmedEvent, notify_customer)
        >>> await dispatcher.dispatch(order.drain_events())
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._handlers: dict[type[DomainEvent], list[LocalEventHandler]] = defaultdict(list)
        self._wildcard_handlers: list[LocalEventHandler] = []
        self._lock = threading.RLock()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self.dispatched_count = 0
        self.handler_errors = 0

    def subscribe(self, event_type: type[DomainEvent], handler: LocalEventHandler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def subscribe_to_all(self, handler: LocalEventHandler) -> None:
        with self._lock:
            self._wildcard_handlers.append(handler)

    async def dispatch(self, events: Sequence[DomainEvent]) -> None:
        """Log each event and run its handlers; handler failures are isolated."""
        for event in events:
            with self._lock:
                handlers = list(self._handlers.get(type(event), [])) + list(
                    self._wildcard_handlers
                )

            logger.info(
                "Domain event %s for %s %s",
                event.event_type,
                event.aggregate_type,
                event.aggregate_id,
                extra={
                    "event_id": str(event.event_id),
                    "event_type": event.event_type,
                    "aggregate_id": event.aggregate_id,
                    "aggregate_type": event.aggregate_type,
                    "handler_count": len(handlers),
                },
            )
            self.dispatched_count += 1
            if not handlers:
                continue

            with self._tracer.span(
                "payrelay.events.dispatch",
                {
                    ATTR_EVENT_TYPE: event.event_type,
                    ATTR_EVENT_ID: str(event.event_id),
                    ATTR_AGGREGATE_ID: event.aggregate_id,
                },
            ):
                await asyncio.gather(*(self._safe_handle(h, event) for h in handlers))

    async def _safe_handle(self, handler: LocalEventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            self.handler_errors += 1
            logger.error(
                "Local handler %s failed for %s: %s",
                getattr(handler, "__qualname__", repr(handler)),
                event.event_type,
                e,
                exc_info=True,
                extra={"event_id": str(event.event_id), "error": str(e)},
            )
