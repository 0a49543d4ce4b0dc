"""
Order aggregate (requester side).

State machine::

    CREATED ──request_payment──▶ PAYMENT_PENDING ──confirm_payment──▶ PAYMENT_CONFIRMED
       │                           │      ▲
       │                fail_payment      │ retry_payment / request_payment
       │                           ▼      │
       └──cancel──▶ CANCELLED ◀──cancel── PAYMENT_FAILED

``transaction_id`` is set exactly while the order is pending, confirmed or
failed; a cancelled order keeps it only in its cancellation event.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from payrelay.aggregates.base import AggregateRoot, require_text, utc_now
from payrelay.aggregates.values import BillingAddress, CardDetails, Money
from payrelay.events.payment import (
    OrderCancelledEvent,
    PaymentConfirmedEvent,
    PaymentFailedEvent,
    PaymentRequestedEvent,
)
from payrelay.exceptions import ValidationError


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CANCELLED = "CANCELLED"

    @property
    def can_request_payment(self) -> bool:
        return self in (OrderStatus.CREATED, OrderStatus.PAYMENT_FAILED)

    @property
    def can_cancel(self) -> bool:
        return self in (OrderStatus.CREATED, OrderStatus.PAYMENT_FAILED)

    @property
    def has_transaction(self) -> bool:
        return self in (
            OrderStatus.PAYMENT_PENDING,
            OrderStatus.PAYMENT_CONFIRMED,
            OrderStatus.PAYMENT_FAILED,
        )


class Order(AggregateRoot):
    """
    An order awaiting, holding or lacking a confirmed payment.

    Use :meth:`create` for new orders; the constructor rebuilds persisted
    ones and checks the transaction-id invariant.
    """

    aggregate_type = "Order"

    def __init__(
        self,
        order_id: str,
        customer_id: str,
        amount: Money,
        *,
        status: OrderStatus = OrderStatus.CREATED,
        transaction_id: str | None = None,
        payment_id: str | None = None,
        payment_method: CardDetails | None = None,
        billing_address: BillingAddress | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        version: int = 0,
    ) -> None:
        super().__init__(require_text(order_id, "order_id"), version)
        self.customer_id = require_text(customer_id, "customer_id")
        if not isinstance(amount, Money):
            raise ValidationError("amount must be Money", field="amount")
        self.amount = amount
        self.status = OrderStatus(status)
        if self.status.has_transaction != (transaction_id is not None):
            raise ValidationError(
                f"transaction_id must be set iff status is pending, confirmed or failed "
                f"(status={self.status.value}, transaction_id={transaction_id!r})",
                field="transaction_id",
            )
        self.transaction_id = transaction_id
        self.payment_id = payment_id
        self.payment_method = payment_method
        self.billing_address = billing_address
        self.created_at = created_at or utc_now()
        self.updated_at = updated_at or self.created_at

    @classmethod
    def create(
        cls,
        customer_id: str,
        amount: Money,
        *,
        payment_method: CardDetails | None = None,
        billing_address: BillingAddress | None = None,
        order_id: str | None = None,
    ) -> Order:
        return cls(
            order_id or str(uuid4()),
            customer_id,
            amount,
            payment_method=payment_method,
            billing_address=billing_address,
        )

    @property
    def order_id(self) -> str:
        return self.id

    def request_payment(self, transaction_id: str) -> None:
        if not self.status.can_request_payment:
            raise self._reject("request payment for", self.status.value)
        self._start_payment(require_text(transaction_id, "transaction_id"))

    def retry_payment(self, new_transaction_id: str) -> None:
        """Re-request payment after a failure under a fresh transaction id."""
        if self.status is not OrderStatus.PAYMENT_FAILED:
            raise self._reject("retry payment for", self.status.value)
        tx = require_text(new_transaction_id, "transaction_id")
        if tx == self.transaction_id:
            raise ValidationError("retry must use a new transaction id", field="transaction_id")
        self._start_payment(tx)

    def _start_payment(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        self.status = OrderStatus.PAYMENT_PENDING
        self._touch()
        self._record(
            PaymentRequestedEvent(
                aggregate_id=self.id,
                order_id=self.id,
                transaction_id=transaction_id,
                customer_id=self.customer_id,
            )
        )

    def confirm_payment(self, payment_id: str) -> None:
        if self.status is not OrderStatus.PAYMENT_PENDING:
            raise self._reject("confirm payment for", self.status.value)
        self.payment_id = require_text(payment_id, "payment_id")
        self.status = OrderStatus.PAYMENT_CONFIRMED
        self._touch()
        self._record(
            PaymentConfirmedEvent(
                aggregate_id=self.id,
                order_id=self.id,
                transaction_id=self.transaction_id,
                payment_id=self.payment_id,
            )
        )

    def fail_payment(self, reason: str) -> None:
        if self.status is not OrderStatus.PAYMENT_PENDING:
            raise self._reject("fail payment for", self.status.value)
        reason = require_text(reason, "reason")
        self.status = OrderStatus.PAYMENT_FAILED
        self._touch()
        self._record(
            PaymentFailedEvent(
                aggregate_id=self.id,
                order_id=self.id,
                transaction_id=self.transaction_id,
                reason=reason,
            )
        )

    def cancel(self, reason: str | None = None) -> None:
        if not self.status.can_cancel:
            raise self._reject("cancel", self.status.value)
        self.status = OrderStatus.CANCELLED
        self.transaction_id = None
        self._touch()
        self._record(OrderCancelledEvent(aggregate_id=self.id, order_id=self.id, reason=reason))

    @property
    def can_retry_payment(self) -> bool:
        return self.status is OrderStatus.PAYMENT_FAILED

    def _touch(self) -> None:
        self.updated_at = utc_now()
