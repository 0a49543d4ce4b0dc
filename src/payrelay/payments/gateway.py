"""
Payment gateway port.

The gateway is an external collaborator: it takes a transaction and
answers with a response string such as ``"SUCCESS"`` or
``"DECLINED: insufficient funds"``. :func:`call_gateway` bounds the call
with a timeout and turns errors into a Result, so the payment service never
sees a raw gateway exception.
"""

import asyncio
import logging
from typing import Protocol, runtime_checkable

from payrelay.aggregates.values import Money
from payrelay.observability import SpanKindEnum, Tracer, create_tracer
from payrelay.observability.attributes import (
    ATTR_ERROR_TYPE,
    ATTR_RESULT_KIND,
    ATTR_TRANSACTION_ID,
)
from payrelay.results import Ok, Result, Retryable, classify_exception

logger = logging.getLogger(__name__)

GATEWAY_ERROR_PREFIX = "GATEWAY_ERROR"


@runtime_checkable
class PaymentGateway(Protocol):
    async def process(
        self,
        transaction_id: str,
        amount: Money,
        credit_card_ref: str | None,
        merchant_id: str,
    ) -> str:
        """Charge ``amount`` and return the gateway's response string."""
        ...


async def call_gateway(
    gateway: PaymentGateway,
    transaction_id: str,
    amount: Money,
    credit_card_ref: str | None,
    merchant_id: str,
    *,
    timeout: float = 30.0,
    tracer: Tracer | None = None,
) -> Result[str]:
    """
    Call the gateway and report the outcome.

    Returns:
        ``Ok(response)`` when the gateway answered (approved or declined),
        ``Retryable`` on timeouts and transient errors, ``Fatal`` otherwise
    """
    tracer = tracer or create_tracer(__name__, enable_tracing=False)
    with tracer.span_with_kind(
        "payrelay.gateway.process",
        SpanKindEnum.CLIENT,
        {ATTR_TRANSACTION_ID: transaction_id},
    ) as span:
        result: Result[str]
        try:
            response = await asyncio.wait_for(
                gateway.process(transaction_id, amount, credit_card_ref, merchant_id),
                timeout=timeout,
            )
            result = Ok(response)
        except TimeoutError as e:
            result = Retryable(f"gateway timed out after {timeout}s", e)
        except Exception as e:
            result = classify_exception(e)

        if span:
            span.set_attribute(ATTR_RESULT_KIND, result.kind)
            if not isinstance(result, Ok) and result.exception is not None:
                span.set_attribute(ATTR_ERROR_TYPE, type(result.exception).__name__)

    if not isinstance(result, Ok):
        logger.warning(
            "Gateway call for %s failed: %s",
            transaction_id,
            result.error,
            extra={"transaction_id": transaction_id, "result": result.kind},
        )
    return result


def gateway_error_response(error: str) -> str:
    """Response string recorded on a payment when the gateway call failed."""
    return f"{GATEWAY_ERROR_PREFIX}: {error}"


__all__ = [
    "PaymentGateway",
    "call_gateway",
    "gateway_error_response",
    "GATEWAY_ERROR_PREFIX",
]
