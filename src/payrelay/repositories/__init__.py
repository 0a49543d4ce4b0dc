"""
Persistence for payrelay.

Every store comes as a Protocol with an in-memory implementation (tests,
single process) and a SQLAlchemy implementation (PostgreSQL via asyncpg,
SQLite via aiosqlite). Both are driven through a unit of work.
"""

from payrelay.repositories.memory import InMemoryDatabase
from payrelay.repositories.orders import (
    InMemoryOrderRepository,
    OrderRepository,
    SQLAlchemyOrderRepository,
)
from payrelay.repositories.outbox import (
    InMemoryOutboxStore,
    OutboxEvent,
    OutboxStatistics,
    OutboxStore,
    SQLAlchemyOutboxStore,
)
from payrelay.repositories.payments import (
    InMemoryPaymentRepository,
    PaymentRepository,
    SQLAlchemyPaymentRepository,
)
from payrelay.repositories.requests import (
    InMemoryPaymentRequestStore,
    PaymentRequestRecord,
    PaymentRequestStore,
    RequestStatus,
    RetryOutcome,
    RetryRecord,
    RetryStatistics,
    SQLAlchemyPaymentRequestStore,
)
from payrelay.repositories.schema import create_relay_engine, create_schema, drop_schema
from payrelay.repositories.unit_of_work import (
    InMemoryUnitOfWork,
    SQLAlchemyUnitOfWork,
    UnitOfWork,
    UnitOfWorkFactory,
    in_memory_unit_of_work_factory,
    sqlalchemy_unit_of_work_factory,
)

__all__ = [
    # Storage
    "InMemoryDatabase",
    "create_relay_engine",
    "create_schema",
    "drop_schema",
    # Orders
    "OrderRepository",
    "InMemoryOrderRepository",
    "SQLAlchemyOrderRepository",
    # Payments
    "PaymentRepository",
    "InMemoryPaymentRepository",
    "SQLAlchemyPaymentRepository",
    # Outbox
    "OutboxEvent",
    "OutboxStatistics",
    "OutboxStore",
    "InMemoryOutboxStore",
    "SQLAlchemyOutboxStore",
    # Request tracking
    "RequestStatus",
    "RetryOutcome",
    "PaymentRequestRecord",
    "RetryRecord",
    "RetryStatistics",
    "PaymentRequestStore",
    "InMemoryPaymentRequestStore",
    "SQLAlchemyPaymentRequestStore",
    # Unit of work
    "UnitOfWork",
    "UnitOfWorkFactory",
    "InMemoryUnitOfWork",
    "SQLAlchemyUnitOfWork",
    "in_memory_unit_of_work_factory",
    "sqlalchemy_unit_of_work_factory",
]
