"""
Payment aggregate (responder side).

A payment is created in PROCESSING when a request for a new transaction id
arrives, is resolved exactly once by :meth:`Payment.process` and may later
be refunded. ``transaction_id`` is the idempotency key: the repository
guarantees at most one payment per transaction id.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from payrelay.aggregates.base import AggregateRoot, require_text, utc_now
from payrelay.aggregates.values import Money
from payrelay.events.payment import (
    PaymentFailedEvent,
    PaymentProcessedEvent,
    PaymentRefundedEvent,
)
from payrelay.exceptions import ValidationError

SUCCESS_OUTCOMES = frozenset({"SUCCESS", "APPROVED"})


def is_success_outcome(gateway_response: str | None) -> bool:
    """
    True when a gateway response string denotes success.

    The leading token (before any ``:``), upper-cased, must be one of
    :data:`SUCCESS_OUTCOMES`; everything else, including None, is failure.
    """
    if not gateway_response:
        return False
    return gateway_response.strip().split(":", 1)[0].strip().upper() in SUCCESS_OUTCOMES


class PaymentStatus(str, Enum):
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def is_final(self) -> bool:
        return self is not PaymentStatus.PROCESSING


class Payment(AggregateRoot):
    aggregate_type = "Payment"

    def __init__(
        self,
        payment_id: str,
        transaction_id: str,
        order_id: str,
        customer_id: str,
        amount: Money,
        *,
        status: PaymentStatus = PaymentStatus.PROCESSING,
        gateway_response: str | None = None,
        failure_reason: str | None = None,
        processed_at: datetime | None = None,
        refunded_at: datetime | None = None,
        created_at: datetime | None = None,
        version: int = 0,
    ) -> None:
        super().__init__(require_text(payment_id, "payment_id"), version)
        self.transaction_id = require_text(transaction_id, "transaction_id")
        self.order_id = require_text(order_id, "order_id")
        self.customer_id = require_text(customer_id, "customer_id")
        if not isinstance(amount, Money):
            raise ValidationError("amount must be Money", field="amount")
        self.amount = amount
        self.status = PaymentStatus(status)
        self.gateway_response = gateway_response
        self.failure_reason = failure_reason
        self.processed_at = processed_at
        self.refunded_at = refunded_at
        self.created_at = created_at or utc_now()

    @classmethod
    def create(
        cls,
        transaction_id: str,
        order_id: str,
        customer_id: str,
        amount: Money,
        *,
        payment_id: str | None = None,
    ) -> Payment:
        return cls(payment_id or str(uuid4()), transaction_id, order_id, customer_id, amount)

    @property
    def payment_id(self) -> str:
        return self.id

    @property
    def is_final(self) -> bool:
        return self.status.is_final

    def process(self, gateway_response: str) -> None:
        """
        Resolve the payment from the gateway's response.

        Raises:
            InvalidStateTransitionError: If the payment was already resolved.
                Processing twice is a programming error; duplicates must be
                stopped by the idempotency guard before reaching here.
        """
        if self.status is not PaymentStatus.PROCESSING:
            raise self._reject("process", self.status.value)

        self.gateway_response = gateway_response
        self.processed_at = utc_now()
        if is_success_outcome(gateway_response):
            self.status = PaymentStatus.SUCCESS
            self._record(
                PaymentProcessedEvent(
                    aggregate_id=self.id,
                    payment_id=self.id,
                    order_id=self.order_id,
                    transaction_id=self.transaction_id,
                    amount=self.amount.amount,
                    currency=self.amount.currency,
                )
            )
        else:
            self._fail(f"Payment processing failed: {gateway_response or 'no response'}")

    def reject(self, reason: str) -> None:
        """
        Fail the payment without calling the gateway.

        Used when the request breaks a business rule; the failure is stored
        so redeliveries of the same transaction id get the same answer.
        """
        if self.status is not PaymentStatus.PROCESSING:
            raise self._reject("reject", self.status.value)
        reason = require_text(reason, "reason")
        self.processed_at = utc_now()
        self._fail(f"Payment validation failed: {reason}")

    def _fail(self, reason: str) -> None:
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self._record(
            PaymentFailedEvent(
                aggregate_id=self.id,
                aggregate_type=self.aggregate_type,
                order_id=self.order_id,
                transaction_id=self.transaction_id,
                reason=reason,
                payment_id=self.id,
            )
        )

    def refund(self, reason: str) -> None:
        if self.status is not PaymentStatus.SUCCESS:
            raise self._reject("refund", self.status.value)
        reason = require_text(reason, "reason")
        self.status = PaymentStatus.REFUNDED
        self.refunded_at = utc_now()
        self._record(
            PaymentRefundedEvent(
                aggregate_id=self.id,
                payment_id=self.id,
                order_id=self.order_id,
                transaction_id=self.transaction_id,
                reason=reason,
            )
        )
