"""
Table definitions for the SQL repositories.

The same metadata serves PostgreSQL (asyncpg) and SQLite (aiosqlite).
Timestamps always round-trip as timezone-aware UTC datetimes through
:class:`UTCDateTime`, whatever the backend stores.

Example:
    >>> engine = create_relay_engine("sqlite+aiosqlite:///relay.db")
    >>> await create_schema(engine)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.types import TypeDecorator

from payrelay.serialization import json_dumps


class UTCDateTime(TypeDecorator[datetime]):
    """
    DateTime column that only accepts aware datetimes and always returns
    them in UTC.

    SQLite has no timezone support, so values are normalized to UTC before
    binding and tagged as UTC again when read.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime {value!r} cannot be stored")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


metadata = MetaData()

orders = Table(
    "orders",
    metadata,
    Column("order_id", String(64), primary_key=True),
    Column("customer_id", String(64), nullable=False),
    Column("amount", Numeric(19, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("status", String(32), nullable=False),
    Column("transaction_id", String(64), nullable=True),
    Column("payment_id", String(64), nullable=True),
    Column("payment_method", JSON, nullable=True),
    Column("billing_address", JSON, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    Column("version", Integer, nullable=False, default=1),
    Index("idx_orders_status", "status"),
    Index("idx_orders_transaction_id", "transaction_id"),
)

payments = Table(
    "payments",
    metadata,
    Column("payment_id", String(64), primary_key=True),
    Column("transaction_id", String(64), nullable=False),
    Column("order_id", String(64), nullable=False),
    Column("customer_id", String(64), nullable=False),
    Column("amount", Numeric(19, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("status", String(32), nullable=False),
    Column("gateway_response", Text, nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("processed_at", UTCDateTime, nullable=True),
    Column("refunded_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("version", Integer, nullable=False, default=1),
    UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
    Index("idx_payments_order_id", "order_id"),
)

outbox_events = Table(
    "outbox_events",
    metadata,
    Column("event_id", String(36), primary_key=True),
    Column("event_type", String(100), nullable=False),
    Column("aggregate_id", String(64), nullable=False),
    Column("aggregate_type", String(50), nullable=False),
    Column("payload", Text, nullable=False),
    Column("headers", JSON, nullable=False),
    Column("processed", Boolean, nullable=False, default=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("processed_at", UTCDateTime, nullable=True),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("last_error", Text, nullable=True),
    Index("idx_outbox_unprocessed", "processed", "created_at"),
    Index("idx_outbox_aggregate", "aggregate_type", "aggregate_id"),
)

payment_requests = Table(
    "payment_requests",
    metadata,
    Column("order_id", String(64), primary_key=True),
    Column("transaction_id", String(64), nullable=False),
    Column("status", String(20), nullable=False),
    Column("sent_at", UTCDateTime, nullable=False),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("next_attempt_at", UTCDateTime, nullable=False),
    Column("last_retry_at", UTCDateTime, nullable=True),
    Column("resolved_at", UTCDateTime, nullable=True),
    Index("idx_payment_requests_due", "status", "next_attempt_at"),
)

retry_records = Table(
    "retry_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(64), nullable=False),
    Column("attempt_number", Integer, nullable=False),
    Column("transaction_id", String(64), nullable=False),
    Column("attempted_at", UTCDateTime, nullable=False),
    Column("outcome", String(20), nullable=False),
    Column("error", Text, nullable=True),
    UniqueConstraint("order_id", "attempt_number", name="uq_retry_records_attempt"),
)


def create_relay_engine(url: str, **kwargs: Any) -> AsyncEngine:
    """
    Create an async engine for ``url``.

    For SQLite the driver's own transaction handling is disabled and every
    transaction starts with ``BEGIN IMMEDIATE``, which makes savepoints work
    and serializes writers instead of failing on lock upgrades. JSON columns
    are written with :func:`~payrelay.serialization.json_dumps` unless a
    ``json_serializer`` is passed.
    """
    kwargs.setdefault("json_serializer", json_dumps)
    engine = create_async_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection: Any, connection_record: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


async def create_schema(engine: AsyncEngine) -> None:
    """Create all payrelay tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def drop_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


__all__ = [
    "UTCDateTime",
    "metadata",
    "orders",
    "payments",
    "outbox_events",
    "payment_requests",
    "retry_records",
    "create_relay_engine",
    "create_schema",
    "drop_schema",
]
