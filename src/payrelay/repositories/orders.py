"""
Order repositories.

Orders are state-stored: the repository writes the current row and checks
``version`` for optimistic concurrency. Saving never touches the event
buffer; the application service drains it and writes the outbox rows in the
same unit of work.
"""

import logging
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from payrelay.aggregates.order import Order, OrderStatus
from payrelay.aggregates.values import BillingAddress, CardDetails, Money
from payrelay.exceptions import AggregateNotFoundError, OptimisticLockError
from payrelay.observability import Tracer, create_tracer
from payrelay.observability.attributes import ATTR_DB_SYSTEM, ATTR_ORDER_ID
from payrelay.repositories._connection import connection_scope, dialect_name
from payrelay.repositories.memory import InMemoryDatabase
from payrelay.repositories.schema import orders

logger = logging.getLogger(__name__)


def order_to_row(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "customer_id": order.customer_id,
        "amount": order.amount.amount,
        "currency": order.amount.currency,
        "status": order.status.value,
        "transaction_id": order.transaction_id,
        "payment_id": order.payment_id,
        "payment_method": (
            order.payment_method.model_dump(mode="json") if order.payment_method else None
        ),
        "billing_address": (
            order.billing_address.model_dump(mode="json") if order.billing_address else None
        ),
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def order_from_row(row: Any) -> Order:
    data = row if isinstance(row, dict) else row._mapping
    return Order(
        data["order_id"],
        data["customer_id"],
        Money.of(data["amount"], data["currency"]),
        status=OrderStatus(data["status"]),
        transaction_id=data["transaction_id"],
        payment_id=data["payment_id"],
        payment_method=(
            CardDetails.model_validate(data["payment_method"]) if data["payment_method"] else None
        ),
        billing_address=(
            BillingAddress.model_validate(data["billing_address"])
            if data["billing_address"]
            else None
        ),
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        version=data["version"],
    )


@runtime_checkable
class OrderRepository(Protocol):
    async def save(self, order: Order) -> None:
        """
        Insert a new order or update an existing one.

        Raises:
            OptimisticLockError: If the stored version differs from the
                order's version
        """
        ...

    async def find_by_id(self, order_id: str) -> Order | None: ...

    async def get(self, order_id: str) -> Order:
        """
        Raises:
            AggregateNotFoundError: If no order has this id
        """
        ...

    async def find_by_transaction_id(self, transaction_id: str) -> Order | None: ...

    async def find_by_status(self, status: OrderStatus, limit: int = 100) -> list[Order]: ...


class InMemoryOrderRepository:
    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database

    @property
    def _rows(self) -> dict[str, dict[str, Any]]:
        return self._database.table("orders")

    async def save(self, order: Order) -> None:
        stored = self._rows.get(order.id)
        if order.version == 0 and stored is not None:
            raise OptimisticLockError(Order.aggregate_type, order.id, order.version)
        if order.version > 0 and (stored is None or stored["version"] != order.version):
            raise OptimisticLockError(Order.aggregate_type, order.id, order.version)
        self._rows[order.id] = {**order_to_row(order), "version": order.version + 1}
        order.mark_saved()

    async def find_by_id(self, order_id: str) -> Order | None:
        row = self._rows.get(order_id)
        return order_from_row(dict(row)) if row is not None else None

    async def get(self, order_id: str) -> Order:
        order = await self.find_by_id(order_id)
        if order is None:
            raise AggregateNotFoundError(order_id, Order.aggregate_type)
        return order

    async def find_by_transaction_id(self, transaction_id: str) -> Order | None:
        for row in self._rows.values():
            if row["transaction_id"] == transaction_id:
                return order_from_row(dict(row))
        return None

    async def find_by_status(self, status: OrderStatus, limit: int = 100) -> list[Order]:
        rows = sorted(
            (row for row in self._rows.values() if row["status"] == status.value),
            key=lambda row: row["created_at"],
        )
        return [order_from_row(dict(row)) for row in rows[:limit]]


class SQLAlchemyOrderRepository:
    """
    Order repository on the ``orders`` table.

    A new order (version 0) is inserted; a loaded order is updated with a
    ``WHERE version = :version`` guard so concurrent writers cannot
    overwrite each other.
    """

    def __init__(
        self,
        bind: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._bind = bind
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._db_system = dialect_name(bind)

    async def save(self, order: Order) -> None:
        with self._tracer.span(
            "payrelay.orders.save",
            {ATTR_ORDER_ID: order.id, ATTR_DB_SYSTEM: self._db_system},
        ):
            row = order_to_row(order)
            async with connection_scope(self._bind) as conn:
                if order.version == 0:
                    try:
                        await conn.execute(insert(orders).values(**row, version=1))
                    except IntegrityError as e:
                        raise OptimisticLockError(Order.aggregate_type, order.id, 0) from e
                else:
                    result = await conn.execute(
                        update(orders)
                        .where(orders.c.order_id == order.id, orders.c.version == order.version)
                        .values(**row, version=order.version + 1)
                    )
                    if result.rowcount == 0:
                        raise OptimisticLockError(Order.aggregate_type, order.id, order.version)
            order.mark_saved()

    async def _find_one(self, *criteria: Any) -> Order | None:
        async with connection_scope(self._bind, transactional=False) as conn:
            row = (await conn.execute(select(orders).where(*criteria))).first()
        return order_from_row(row) if row is not None else None

    async def find_by_id(self, order_id: str) -> Order | None:
        return await self._find_one(orders.c.order_id == order_id)

    async def get(self, order_id: str) -> Order:
        order = await self.find_by_id(order_id)
        if order is None:
            raise AggregateNotFoundError(order_id, Order.aggregate_type)
        return order

    async def find_by_transaction_id(self, transaction_id: str) -> Order | None:
        return await self._find_one(orders.c.transaction_id == transaction_id)

    async def find_by_status(self, status: OrderStatus, limit: int = 100) -> list[Order]:
        query = (
            select(orders)
            .where(orders.c.status == status.value)
            .order_by(orders.c.created_at)
            .limit(limit)
        )
        async with connection_scope(self._bind, transactional=False) as conn:
            rows = (await conn.execute(query)).fetchall()
        return [order_from_row(row) for row in rows]


__all__ = [
    "OrderRepository",
    "InMemoryOrderRepository",
    "SQLAlchemyOrderRepository",
    "order_to_row",
    "order_from_row",
]
