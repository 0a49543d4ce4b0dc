"""
Payment repositories.

The ``payments`` table has a unique constraint on ``transaction_id``; it is
the responder's coordination point. Inserting a second payment for the same
transaction id raises :class:`DuplicateTransactionError`, which the
idempotency guard turns into a lookup of the winning payment.
"""

import logging
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from payrelay.aggregates.payment import Payment, PaymentStatus
from payrelay.aggregates.values import Money
from payrelay.exceptions import (
    AggregateNotFoundError,
    DuplicateTransactionError,
    OptimisticLockError,
)
from payrelay.observability import Tracer, create_tracer
from payrelay.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_PAYMENT_ID,
    ATTR_TRANSACTION_ID,
)
from payrelay.repositories._connection import connection_scope, dialect_name
from payrelay.repositories.memory import InMemoryDatabase
from payrelay.repositories.schema import payments

logger = logging.getLogger(__name__)


def payment_to_row(payment: Payment) -> dict[str, Any]:
    return {
        "payment_id": payment.id,
        "transaction_id": payment.transaction_id,
        "order_id": payment.order_id,
        "customer_id": payment.customer_id,
        "amount": payment.amount.amount,
        "currency": payment.amount.currency,
        "status": payment.status.value,
        "gateway_response": payment.gateway_response,
        "failure_reason": payment.failure_reason,
        "processed_at": payment.processed_at,
        "refunded_at": payment.refunded_at,
        "created_at": payment.created_at,
    }


def payment_from_row(row: Any) -> Payment:
    data = row if isinstance(row, dict) else row._mapping
    return Payment(
        data["payment_id"],
        data["transaction_id"],
        data["order_id"],
        data["customer_id"],
        Money.of(data["amount"], data["currency"]),
        status=PaymentStatus(data["status"]),
        gateway_response=data["gateway_response"],
        failure_reason=data["failure_reason"],
        processed_at=data["processed_at"],
        refunded_at=data["refunded_at"],
        created_at=data["created_at"],
        version=data["version"],
    )


@runtime_checkable
class PaymentRepository(Protocol):
    async def save(self, payment: Payment) -> None:
        """
        Insert a new payment or update an existing one.

        Raises:
            DuplicateTransactionError: If a new payment reuses a transaction id
            OptimisticLockError: If an update finds a different version
        """
        ...

    async def find_by_id(self, payment_id: str) -> Payment | None: ...

    async def get(self, payment_id: str) -> Payment: ...

    async def find_by_transaction_id(self, transaction_id: str) -> Payment | None: ...

    async def find_by_order_id(self, order_id: str) -> list[Payment]: ...


class InMemoryPaymentRepository:
    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database

    @property
    def _rows(self) -> dict[str, dict[str, Any]]:
        return self._database.table("payments")

    async def save(self, payment: Payment) -> None:
        stored = self._rows.get(payment.id)
        if payment.version == 0:
            if any(
                row["transaction_id"] == payment.transaction_id for row in self._rows.values()
            ):
                raise DuplicateTransactionError(payment.transaction_id)
            if stored is not None:
                raise OptimisticLockError(Payment.aggregate_type, payment.id, 0)
        elif stored is None or stored["version"] != payment.version:
            raise OptimisticLockError(Payment.aggregate_type, payment.id, payment.version)
        self._rows[payment.id] = {**payment_to_row(payment), "version": payment.version + 1}
        payment.mark_saved()

    async def find_by_id(self, payment_id: str) -> Payment | None:
        row = self._rows.get(payment_id)
        return payment_from_row(dict(row)) if row is not None else None

    async def get(self, payment_id: str) -> Payment:
        payment = await self.find_by_id(payment_id)
        if payment is None:
            raise AggregateNotFoundError(payment_id, Payment.aggregate_type)
        return payment

    async def find_by_transaction_id(self, transaction_id: str) -> Payment | None:
        for row in self._rows.values():
            if row["transaction_id"] == transaction_id:
                return payment_from_row(dict(row))
        return None

    async def find_by_order_id(self, order_id: str) -> list[Payment]:
        rows = sorted(
            (row for row in self._rows.values() if row["order_id"] == order_id),
            key=lambda row: row["created_at"],
        )
        return [payment_from_row(dict(row)) for row in rows]


class SQLAlchemyPaymentRepository:
    def __init__(
        self,
        bind: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._bind = bind
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._db_system = dialect_name(bind)

    async def save(self, payment: Payment) -> None:
        with self._tracer.span(
            "payrelay.payments.save",
            {
                ATTR_PAYMENT_ID: payment.id,
                ATTR_TRANSACTION_ID: payment.transaction_id,
                ATTR_DB_SYSTEM: self._db_system,
            },
        ):
            row = payment_to_row(payment)
            async with connection_scope(self._bind) as conn:
                if payment.version == 0:
                    try:
                        await conn.execute(insert(payments).values(**row, version=1))
                    except IntegrityError as e:
                        raise DuplicateTransactionError(payment.transaction_id) from e
                else:
                    result = await conn.execute(
                        update(payments)
                        .where(
                            payments.c.payment_id == payment.id,
                            payments.c.version == payment.version,
                        )
                        .values(**row, version=payment.version + 1)
                    )
                    if result.rowcount == 0:
                        raise OptimisticLockError(
                            Payment.aggregate_type, payment.id, payment.version
                        )
            payment.mark_saved()

    async def _find_one(self, *criteria: Any) -> Payment | None:
        async with connection_scope(self._bind, transactional=False) as conn:
            row = (await conn.execute(select(payments).where(*criteria))).first()
        return payment_from_row(row) if row is not None else None

    async def find_by_id(self, payment_id: str) -> Payment | None:
        return await self._find_one(payments.c.payment_id == payment_id)

    async def get(self, payment_id: str) -> Payment:
        payment = await self.find_by_id(payment_id)
        if payment is None:
            raise AggregateNotFoundError(payment_id, Payment.aggregate_type)
        return payment

    async def find_by_transaction_id(self, transaction_id: str) -> Payment | None:
        return await self._find_one(payments.c.transaction_id == transaction_id)

    async def find_by_order_id(self, order_id: str) -> list[Payment]:
        query = (
            select(payments).where(payments.c.order_id == order_id).order_by(payments.c.created_at)
        )
        async with connection_scope(self._bind, transactional=False) as conn:
            rows = (await conn.execute(query)).fetchall()
        return [payment_from_row(row) for row in rows]


__all__ = [
    "PaymentRepository",
    "InMemoryPaymentRepository",
    "SQLAlchemyPaymentRepository",
]
