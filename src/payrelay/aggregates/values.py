"""
Value objects shared by the Order and Payment aggregates.

``Money`` and ``CreditCard`` validate on construction and raise
:class:`~payrelay.exceptions.ValidationError`, so malformed command input
is rejected at the aggregate boundary and never reaches the outbox.
``CardDetails`` and ``BillingAddress`` are pydantic models because they
travel on the wire inside :class:`~payrelay.messages.PaymentRequest`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from payrelay.exceptions import ValidationError

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Money:
    """
    A positive amount with at most two fractional digits in one currency.

    Example:
        >>> Money.of("100", "usd")
        Money(amount=Decimal('100.00'), currency='USD')
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal) or not self.amount.is_finite():
            raise ValidationError("amount must be a finite decimal", field="amount")
        if self.amount <= 0:
            raise ValidationError("amount must be positive", field="amount")
        if self.amount != self.amount.quantize(_CENTS):
            raise ValidationError("amount has more than two decimal places", field="amount")
        if not isinstance(self.currency, str) or not _CURRENCY_PATTERN.match(self.currency):
            raise ValidationError(
                f"currency must be a three-letter code, got {self.currency!r}",
                field="currency",
            )
        object.__setattr__(self, "amount", self.amount.quantize(_CENTS, rounding=ROUND_HALF_UP))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str) -> Money:
        """Build from loosely typed input (strings, ints, lower-case codes)."""
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except InvalidOperation as e:
            raise ValidationError(f"invalid amount {amount!r}", field="amount") from e
        return cls(value, currency.strip().upper() if isinstance(currency, str) else currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class CardDetails(_WireModel):
    """Masked card data; the only card representation that leaves the order owner."""

    masked_number: str = Field(pattern=r"^\*{4} \*{4} \*{4} \d{4}$")
    expiry_date: str = Field(pattern=r"^(0[1-9]|1[0-2])/\d{2}$")
    cvv: str = "***"
    holder_name: str
    brand: str = "UNKNOWN"

    @property
    def last_four(self) -> str:
        return self.masked_number[-4:]

    @property
    def reference(self) -> str:
        """Opaque reference handed to the payment gateway."""
        return f"{self.brand}-{self.last_four}"


class BillingAddress(_WireModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    postal_code: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)


def _luhn_valid(number: str) -> bool:
    total = 0
    for i, char in enumerate(reversed(number)):
        digit = int(char)
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


@dataclass(frozen=True)
class CreditCard:
    """
    Raw card input accepted when an order is created.

    Only :meth:`masked` is ever stored or sent; the full number, CVV and
    expiry are validated here and then dropped.
    """

    number: str
    expiry_date: str
    cvv: str
    holder_name: str

    def __post_init__(self) -> None:
        number = re.sub(r"[\s-]", "", self.number or "")
        if not re.fullmatch(r"\d{13,19}", number):
            raise ValidationError("card number must be 13 to 19 digits", field="card_number")
        if not _luhn_valid(number):
            raise ValidationError("card number failed checksum", field="card_number")
        object.__setattr__(self, "number", number)

        match = re.fullmatch(r"(0[1-9]|1[0-2])/(\d{2})", self.expiry_date or "")
        if match is None:
            raise ValidationError("expiry date must be MM/YY", field="expiry_date")
        if self.is_expired():
            raise ValidationError("credit card has expired", field="expiry_date")

        if not re.fullmatch(r"\d{3,4}", self.cvv or ""):
            raise ValidationError("cvv must be 3 or 4 digits", field="cvv")

        holder = (self.holder_name or "").strip()
        if not 2 <= len(holder) <= 50:
            raise ValidationError("holder name must be 2 to 50 characters", field="holder_name")
        object.__setattr__(self, "holder_name", holder.upper())

    def is_expired(self, now: datetime | None = None) -> bool:
        month, year = self.expiry_date.split("/")
        current = now or datetime.now(UTC)
        expiry = (2000 + int(year), int(month))
        return expiry < (current.year, current.month)

    @property
    def brand(self) -> str:
        first = self.number[0]
        if first == "4":
            return "VISA"
        if first in ("2", "5"):
            return "MASTERCARD"
        if first == "3":
            return "AMEX"
        return "UNKNOWN"

    def masked(self) -> CardDetails:
        return CardDetails(
            masked_number=f"**** **** **** {self.number[-4:]}",
            expiry_date=self.expiry_date,
            holder_name=self.holder_name,
            brand=self.brand,
        )

    def __repr__(self) -> str:
        return f"CreditCard(number='**** {self.number[-4:]}', holder_name={self.holder_name!r})"


__all__ = [
    "Money",
    "CardDetails",
    "BillingAddress",
    "CreditCard",
]
