"""
Unit of work: one database transaction spanning every repository.

Application services write an aggregate, its outbox rows and request
records through the same unit of work, so either all of them commit or none
do. Leaving the ``async with`` block normally commits; leaving it with an
exception rolls back and re-raises.

Example:
    >>> async with uow_factory() as uow:
    ...     order = await uow.orders.get(order_id)
    ...     order.request_payment(transaction_id)
    ...     await uow.orders.save(order)
    ...     for event in order.drain_events():
    ...         await uow.outbox.save_event(event)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from types import TracebackType
from typing import Protocol, Self, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction

from payrelay.observability import Tracer, create_tracer
from payrelay.repositories.memory import InMemoryDatabase, Snapshot
from payrelay.repositories.orders import (
    InMemoryOrderRepository,
    OrderRepository,
    SQLAlchemyOrderRepository,
)
from payrelay.repositories.outbox import InMemoryOutboxStore, OutboxStore, SQLAlchemyOutboxStore
from payrelay.repositories.payments import (
    InMemoryPaymentRepository,
    PaymentRepository,
    SQLAlchemyPaymentRepository,
)
from payrelay.repositories.requests import (
    InMemoryPaymentRequestStore,
    PaymentRequestStore,
    SQLAlchemyPaymentRequestStore,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class UnitOfWork(Protocol):
    orders: OrderRepository
    payments: PaymentRepository
    outbox: OutboxStore
    requests: PaymentRequestStore

    def savepoint(self) -> AbstractAsyncContextManager[None]:
        """
        Nested transaction for one item of a batch.

        An exception inside the block undoes only the block's writes and is
        re-raised; the enclosing unit of work stays usable.
        """
        ...

    async def __aenter__(self) -> Self: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


UnitOfWorkFactory = Callable[[], UnitOfWork]


class SQLAlchemyUnitOfWork:
    """
    Unit of work on one connection of an async SQLAlchemy engine.

    Repositories are created on entry and bound to the transaction's
    connection. Locking reads made through them (outbox claims, request
    records) hold their row locks until the unit of work ends.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._engine = engine
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._connection: AsyncConnection | None = None
        self._transaction: AsyncTransaction | None = None

    async def __aenter__(self) -> Self:
        if self._connection is not None:
            raise RuntimeError("unit of work is already active")
        self._connection = await self._engine.connect()
        self._transaction = await self._connection.begin()
        self.orders = SQLAlchemyOrderRepository(self._connection, tracer=self._tracer)
        self.payments = SQLAlchemyPaymentRepository(self._connection, tracer=self._tracer)
        self.outbox = SQLAlchemyOutboxStore(self._connection, tracer=self._tracer)
        self.requests = SQLAlchemyPaymentRequestStore(self._connection)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._connection is None or self._transaction is None:
            raise RuntimeError("unit of work is not active")
        try:
            if exc_type is None:
                await self._transaction.commit()
            else:
                await self._transaction.rollback()
                logger.debug("Unit of work rolled back", extra={"error": str(exc)})
        finally:
            await self._connection.close()
            self._connection = None
            self._transaction = None

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        if self._connection is None:
            raise RuntimeError("savepoint() requires an active unit of work")
        async with self._connection.begin_nested():
            yield


class InMemoryUnitOfWork:
    """
    Unit of work over an :class:`InMemoryDatabase`.

    Holds the database lock from entry to exit, so units of work on the same
    database run one at a time; rollback and savepoints restore snapshots.
    """

    def __init__(
        self,
        database: InMemoryDatabase,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._database = database
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._snapshot: Snapshot | None = None
        self.orders = InMemoryOrderRepository(database)
        self.payments = InMemoryPaymentRepository(database)
        self.outbox = InMemoryOutboxStore(database, tracer=self._tracer)
        self.requests = InMemoryPaymentRequestStore(database)

    async def __aenter__(self) -> Self:
        await self._database.lock.acquire()
        self._snapshot = self._database.snapshot()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is not None and self._snapshot is not None:
                self._database.restore(self._snapshot)
                logger.debug("Unit of work rolled back", extra={"error": str(exc)})
        finally:
            self._snapshot = None
            self._database.lock.release()

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        if self._snapshot is None:
            raise RuntimeError("savepoint() requires an active unit of work")
        snapshot = self._database.snapshot()
        try:
            yield
        except BaseException:
            self._database.restore(snapshot)
            raise


def sqlalchemy_unit_of_work_factory(
    engine: AsyncEngine,
    tracer: Tracer | None = None,
    enable_tracing: bool = True,
) -> UnitOfWorkFactory:
    tracer = tracer or create_tracer(__name__, enable_tracing)
    return lambda: SQLAlchemyUnitOfWork(engine, tracer=tracer)


def in_memory_unit_of_work_factory(
    database: InMemoryDatabase,
    tracer: Tracer | None = None,
    enable_tracing: bool = True,
) -> UnitOfWorkFactory:
    tracer = tracer or create_tracer(__name__, enable_tracing)
    return lambda: InMemoryUnitOfWork(database, tracer=tracer)


__all__ = [
    "UnitOfWork",
    "UnitOfWorkFactory",
    "SQLAlchemyUnitOfWork",
    "InMemoryUnitOfWork",
    "sqlalchemy_unit_of_work_factory",
    "in_memory_unit_of_work_factory",
]
