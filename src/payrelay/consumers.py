"""
Transport handlers for the two inbound message types.

A handler decodes the body, calls the service and reports a Result that
settles the message: malformed bodies and programming errors are ``Fatal``
(dead-lettered), transient infrastructure errors are ``Retryable``
(requeued). A payment request that breaks a business limit is answered
with a FAILED confirmation and acknowledged.

Example:
    >>> await transport.subscribe(
    ...     messaging.payment_request_destination,
    ...     payment_request_consumer(payment_service),
    ... )
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import pydantic

from payrelay.aggregates.order import Order
from payrelay.messages import PaymentConfirmation, PaymentRequest, WireMessage
from payrelay.orders.confirmations import PaymentConfirmationHandler
from payrelay.payments.service import PaymentOutcome, PaymentService
from payrelay.results import Fatal, Ok, Result, classify_exception
from payrelay.transport.interface import MessageHandler

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=WireMessage)
T = TypeVar("T")


def _decode(model: type[M], body: bytes, headers: dict[str, Any]) -> M | Fatal:
    try:
        return model.from_json(body)
    except pydantic.ValidationError as e:
        logger.error(
            "Rejecting malformed %s: %s",
            model.__name__,
            e,
            extra={"message_type": model.__name__, "event_id": headers.get("eventId")},
        )
        return Fatal(f"invalid {model.__name__}: {e.error_count()} validation errors", e)


async def _settle(
    operation: Callable[[], Awaitable[T]], context: dict[str, Any]
) -> Result[T]:
    try:
        return Ok(await operation())
    except Exception as e:
        result = classify_exception(e)
        log = logger.error if isinstance(result, Fatal) else logger.warning
        log(
            "Message handling failed (%s): %s",
            result.kind,
            result.error,
            exc_info=isinstance(result, Fatal),
            extra={**context, "error": result.error, "error_type": type(e).__name__},
        )
        return result


def payment_request_consumer(service: PaymentService) -> MessageHandler:
    """Handler processing :class:`PaymentRequest` messages through ``service``."""

    async def handle(body: bytes, headers: dict[str, Any]) -> Result[PaymentOutcome]:
        request = _decode(PaymentRequest, body, headers)
        if isinstance(request, Fatal):
            return request
        return await _settle(
            lambda: service.process_payment_request(request),
            {"transaction_id": request.transaction_id, "order_id": request.order_id},
        )

    return handle


def payment_confirmation_consumer(handler: PaymentConfirmationHandler) -> MessageHandler:
    """Handler applying :class:`PaymentConfirmation` messages through ``handler``."""

    async def handle(body: bytes, headers: dict[str, Any]) -> Result[Order]:
        confirmation = _decode(PaymentConfirmation, body, headers)
        if isinstance(confirmation, Fatal):
            return confirmation
        return await _settle(
            lambda: handler.handle(confirmation),
            {
                "transaction_id": confirmation.transaction_id,
                "order_id": confirmation.order_id,
            },
        )

    return handle


__all__ = ["payment_request_consumer", "payment_confirmation_consumer"]
