"""
Domain events recorded by the Order and Payment aggregates.

Order-side events use ``aggregate_type="Order"`` and the order id as the
aggregate id; payment-side events use ``aggregate_type="Payment"`` and the
payment id. :class:`PaymentFailedEvent` is recorded by both aggregates and
therefore carries the aggregate type explicitly on the payment side.
"""

from decimal import Decimal

from pydantic import Field

from payrelay.events.base import DomainEvent
from payrelay.events.registry import register_event


@register_event
class PaymentRequestedEvent(DomainEvent):
    """An order asked for payment under ``transaction_id``."""

    aggregate_type: str = "Order"
    order_id: str
    transaction_id: str
    customer_id: str


@register_event
class PaymentConfirmedEvent(DomainEvent):
    """The payment owner confirmed the order's current transaction."""

    aggregate_type: str = "Order"
    order_id: str
    transaction_id: str
    payment_id: str


@register_event
class PaymentFailedEvent(DomainEvent):
    """
    A payment attempt failed.

    Recorded by the Order when a failure confirmation (or a confirmation
    timeout) arrives, and by the Payment when the gateway declines; only the
    latter carries ``payment_id``.
    """

    aggregate_type: str = "Order"
    order_id: str
    transaction_id: str
    reason: str
    payment_id: str | None = None


@register_event
class PaymentProcessedEvent(DomainEvent):
    """The gateway accepted a payment."""

    aggregate_type: str = "Payment"
    payment_id: str
    order_id: str
    transaction_id: str
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)


@register_event
class OrderCancelledEvent(DomainEvent):
    aggregate_type: str = "Order"
    order_id: str
    reason: str | None = None


@register_event
class PaymentRefundedEvent(DomainEvent):
    aggregate_type: str = "Payment"
    payment_id: str
    order_id: str
    transaction_id: str
    reason: str


__all__ = [
    "PaymentRequestedEvent",
    "PaymentConfirmedEvent",
    "PaymentFailedEvent",
    "PaymentProcessedEvent",
    "OrderCancelledEvent",
    "PaymentRefundedEvent",
]
