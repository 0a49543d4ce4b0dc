"""Order and Payment aggregates and their value objects."""

from payrelay.aggregates.base import AggregateRoot
from payrelay.aggregates.order import Order, OrderStatus
from payrelay.aggregates.payment import Payment, PaymentStatus, is_success_outcome
from payrelay.aggregates.values import BillingAddress, CardDetails, CreditCard, Money

__all__ = [
    "AggregateRoot",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "is_success_outcome",
    "BillingAddress",
    "CardDetails",
    "CreditCard",
    "Money",
]
