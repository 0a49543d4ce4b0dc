"""Responder side: idempotent payment processing behind a gateway port."""

from payrelay.payments.gateway import (
    GATEWAY_ERROR_PREFIX,
    PaymentGateway,
    call_gateway,
    gateway_error_response,
)
from payrelay.payments.idempotency import IdempotencyGuard
from payrelay.payments.service import PaymentOutcome, PaymentService

__all__ = [
    "GATEWAY_ERROR_PREFIX",
    "PaymentGateway",
    "call_gateway",
    "gateway_error_response",
    "IdempotencyGuard",
    "PaymentOutcome",
    "PaymentService",
]
