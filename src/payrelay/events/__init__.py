"""Domain events, the event registry and the local dispatcher."""

from payrelay.events.base import DomainEvent
from payrelay.events.dispatcher import LocalEventDispatcher, LocalEventHandler
from payrelay.events.payment import (
    OrderCancelledEvent,
    PaymentConfirmedEvent,
    PaymentFailedEvent,
    PaymentProcessedEvent,
    PaymentRefundedEvent,
    PaymentRequestedEvent,
)
from payrelay.events.registry import (
    DuplicateEventTypeError,
    EventRegistry,
    EventTypeNotFoundError,
    default_registry,
    register_event,
)

__all__ = [
    "DomainEvent",
    "LocalEventDispatcher",
    "LocalEventHandler",
    "OrderCancelledEvent",
    "PaymentConfirmedEvent",
    "PaymentFailedEvent",
    "PaymentProcessedEvent",
    "PaymentRefundedEvent",
    "PaymentRequestedEvent",
    "DuplicateEventTypeError",
    "EventRegistry",
    "EventTypeNotFoundError",
    "default_registry",
    "register_event",
]
