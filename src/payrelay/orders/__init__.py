"""Requester side: order commands and confirmation handling."""

from payrelay.orders.confirmations import DEFAULT_FAILURE_REASON, PaymentConfirmationHandler
from payrelay.orders.service import OrderService

__all__ = [
    "DEFAULT_FAILURE_REASON",
    "OrderService",
    "PaymentConfirmationHandler",
]
