"""
Wire messages exchanged between the order owner and the payment owner.

Messages are pydantic models serialized as JSON with camelCase keys. They
are immutable and validated on both ends; a body that fails validation can
never succeed on redelivery and is dead-lettered by the consumers.

Example:
    >>> body = request.to_json()
    >>> PaymentRequest.from_json(body) == request
    True
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from payrelay.aggregates.values import BillingAddress, CardDetails


class WireMessage(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_json(cls, body: bytes | str) -> Self:
        """
        Raises:
            pydantic.ValidationError: If the body is not a valid message
        """
        return cls.model_validate_json(body)


class PaymentRequest(WireMessage):
    """Request from the order owner to charge an order under ``transaction_id``."""

    transaction_id: str = Field(min_length=1)
    order_id: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, decimal_places=2)
    currency: str = Field(pattern=r"^[A-Z]{3}$")
    credit_card: CardDetails | None = None
    billing_address: BillingAddress | None = None
    merchant_id: str = Field(min_length=1)
    description: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConfirmationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentConfirmation(WireMessage):
    """
    Outcome of a payment request, sent by the payment owner.

    A SUCCESS confirmation must name the payment; a FAILED one must carry
    an error message.
    """

    transaction_id: str = Field(min_length=1)
    order_id: str = Field(min_length=1)
    payment_id: str | None = None
    amount: Decimal = Field(gt=0)
    currency: str = Field(pattern=r"^[A-Z]{3}$")
    status: ConfirmationStatus
    gateway_response: str | None = None
    error_message: str | None = None
    processed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> Self:
        if self.status is ConfirmationStatus.SUCCESS and not self.payment_id:
            raise ValueError("a SUCCESS confirmation requires paymentId")
        if self.status is ConfirmationStatus.FAILED and not self.error_message:
            raise ValueError("a FAILED confirmation requires errorMessage")
        return self

    @property
    def is_success(self) -> bool:
        return self.status is ConfirmationStatus.SUCCESS


__all__ = [
    "WireMessage",
    "PaymentRequest",
    "PaymentConfirmation",
    "ConfirmationStatus",
]
