"""
Transactional outbox store.

An outbox row is written in the same database transaction as the aggregate
change that produced the event. The publisher later claims unprocessed rows,
publishes them and flips ``processed``; a crash between publish and mark
therefore leads to a duplicate publish, never to a lost message.

Rows only ever change by being marked processed or by recording a failed
publish attempt, and are only deleted by the cleanup methods.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from payrelay.events.base import DomainEvent
from payrelay.exceptions import OutboxEventNotFoundError, ValidationError
from payrelay.observability import Tracer, create_tracer
from payrelay.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_MAX_RETRIES,
)
from payrelay.repositories._connection import connection_scope, dialect_name, for_update
from payrelay.repositories.memory import InMemoryDatabase
from payrelay.repositories.schema import outbox_events

logger = logging.getLogger(__name__)

HEADER_SCHEMA_VERSION = "1.0"
MAX_LIMIT = 1000


@dataclass
class OutboxEvent:
    """
    One outbox row.

    Attributes:
        event_id: Id of the domain event; also the message id on the wire
        event_type: Registered event type name
        aggregate_id: Aggregate that recorded the event
        aggregate_type: 'Order' or 'Payment'
        payload: The serialized event (JSON)
        headers: eventType, eventId, occurredOn and version
        processed: True once the event has been published
        created_at: When the row was written
        processed_at: When the row was marked processed
        retry_count: Failed publish attempts so far
        last_error: Error of the most recent failed attempt
    """

    event_id: UUID
    event_type: str
    aggregate_id: str
    aggregate_type: str
    payload: str
    headers: dict[str, str] = field(default_factory=dict)
    processed: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    processed_at: datetime | None = None
    retry_count: int = 0
    last_error: str | None = None

    def has_exceeded_retries(self, max_retries: int) -> bool:
        return self.retry_count >= max_retries

    @classmethod
    def from_domain_event(
        cls,
        event: DomainEvent | None,
        aggregate_id: str | None = None,
        aggregate_type: str | None = None,
    ) -> "OutboxEvent":
        """
        Build an unprocessed row for ``event``.

        The aggregate reference defaults to the event's own.

        Raises:
            ValidationError: If the event is missing or the aggregate
                reference is blank
        """
        if event is None:
            raise ValidationError("event must not be None", field="event")
        aggregate_id = aggregate_id if aggregate_id is not None else event.aggregate_id
        aggregate_type = aggregate_type if aggregate_type is not None else event.aggregate_type
        if not aggregate_id or not aggregate_id.strip():
            raise ValidationError("aggregate id must not be blank", field="aggregate_id")
        if not aggregate_type or not aggregate_type.strip():
            raise ValidationError("aggregate type must not be blank", field="aggregate_type")

        return cls(
            event_id=event.event_id,
            event_type=event.event_type,
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            payload=event.model_dump_json(),
            headers={
                "eventType": event.event_type,
                "eventId": str(event.event_id),
                "occurredOn": event.occurred_on.isoformat(),
                "version": HEADER_SCHEMA_VERSION,
            },
        )


@dataclass(frozen=True)
class OutboxStatistics:
    """
    Snapshot of the outbox.

    ``failed_events`` counts unprocessed rows that reached the retry limit.
    """

    total_events: int = 0
    unprocessed_events: int = 0
    failed_events: int = 0
    processed_events: int = 0
    oldest_unprocessed_at: datetime | None = None


def _check_limit(limit: int) -> None:
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}", field="limit")


def _check_positive(value: int, name: str) -> None:
    if value <= 0:
        raise ValidationError("must be positive", field=name)


@runtime_checkable
class OutboxStore(Protocol):
    """
    Protocol for outbox stores.

    Implementations are bound to a unit of work; every method runs inside
    the caller's transaction.
    """

    async def save_event(
        self,
        event: DomainEvent,
        aggregate_id: str | None = None,
        aggregate_type: str | None = None,
    ) -> OutboxEvent:
        """
        Write ``event`` as an unprocessed row.

        Must be called in the same transaction that saves the aggregate.
        """
        ...

    async def get_event(self, event_id: UUID) -> OutboxEvent | None: ...

    async def get_unprocessed_events(self, limit: int = 100) -> list[OutboxEvent]:
        """Unprocessed rows, oldest first."""
        ...

    async def get_retryable_events(self, max_retries: int, limit: int = 100) -> list[OutboxEvent]:
        """
        Claim unprocessed rows with ``retry_count < max_retries``, oldest first.

        On PostgreSQL the rows stay locked (SKIP LOCKED) until the caller's
        transaction ends, so concurrent publishers claim disjoint batches.
        """
        ...

    async def mark_event_as_processed(self, event_id: UUID) -> None:
        """
        Raises:
            OutboxEventNotFoundError: If the row no longer exists
        """
        ...

    async def record_event_failure(self, event_id: UUID, error: str) -> None:
        """Increment retry_count and store the error. Never raises for a missing row."""
        ...

    async def cleanup_processed_events(self, older_than_hours: int) -> int: ...

    async def cleanup_expired_failed_events(self, older_than_hours: int, max_retries: int) -> int:
        """Delete exhausted rows older than the cutoff; returns the number deleted."""
        ...

    async def get_statistics(self, max_retries: int) -> OutboxStatistics: ...


class InMemoryOutboxStore:
    """
    Outbox store backed by an :class:`InMemoryDatabase`.

    Claiming does not lock rows; the in-memory unit of work serializes whole
    transactions instead.

    Example:
        >>> store = InMemoryOutboxStore(database)
        >>> row = await store.save_event(event)
        >>> claimed = await store.get_retryable_events(max_retries=5)
    """

    def __init__(
        self,
        database: InMemoryDatabase,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._database = database
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def _rows(self) -> dict[UUID, dict[str, Any]]:
        return self._database.table("outbox_events")

    @staticmethod
    def _load(row: dict[str, Any]) -> OutboxEvent:
        return OutboxEvent(**{**row, "headers": dict(row["headers"])})

    async def save_event(
        self,
        event: DomainEvent,
        aggregate_id: str | None = None,
        aggregate_type: str | None = None,
    ) -> OutboxEvent:
        outbox_event = OutboxEvent.from_domain_event(event, aggregate_id, aggregate_type)
        with self._tracer.span(
            "payrelay.outbox.save_event",
            {
                ATTR_EVENT_ID: str(outbox_event.event_id),
                ATTR_EVENT_TYPE: outbox_event.event_type,
                ATTR_AGGREGATE_ID: outbox_event.aggregate_id,
                ATTR_AGGREGATE_TYPE: outbox_event.aggregate_type,
                ATTR_DB_SYSTEM: "memory",
            },
        ):
            if outbox_event.event_id in self._rows:
                raise ValidationError(
                    f"event {outbox_event.event_id} is already in the outbox", field="event_id"
                )
            self._rows[outbox_event.event_id] = asdict(outbox_event)
            logger.debug(
                "Saved %s to outbox",
                outbox_event.event_type,
                extra={
                    "event_id": str(outbox_event.event_id),
                    "aggregate_id": outbox_event.aggregate_id,
                },
            )
            return outbox_event

    async def get_event(self, event_id: UUID) -> OutboxEvent | None:
        row = self._rows.get(event_id)
        return self._load(row) if row is not None else None

    def _unprocessed(self, max_retries: int | None, limit: int) -> list[OutboxEvent]:
        rows = [
            row
            for row in self._rows.values()
            if not row["processed"] and (max_retries is None or row["retry_count"] < max_retries)
        ]
        rows.sort(key=lambda row: row["created_at"])
        return [self._load(row) for row in rows[:limit]]

    async def get_unprocessed_events(self, limit: int = 100) -> list[OutboxEvent]:
        _check_limit(limit)
        return self._unprocessed(None, limit)

    async def get_retryable_events(self, max_retries: int, limit: int = 100) -> list[OutboxEvent]:
        _check_positive(max_retries, "max_retries")
        _check_limit(limit)
        with self._tracer.span(
            "payrelay.outbox.get_retryable_events",
            {ATTR_MAX_RETRIES: max_retries, ATTR_DB_SYSTEM: "memory"},
        ) as span:
            events = self._unprocessed(max_retries, limit)
            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(events))
            return events

    async def mark_event_as_processed(self, event_id: UUID) -> None:
        row = self._rows.get(event_id)
        if row is None:
            raise OutboxEventNotFoundError(event_id)
        row["processed"] = True
        row["processed_at"] = datetime.now(UTC)

    async def record_event_failure(self, event_id: UUID, error: str) -> None:
        row = self._rows.get(event_id)
        if row is None:
            logger.warning(
                "Cannot record failure for missing outbox event %s",
                event_id,
                extra={"event_id": str(event_id), "error": error},
            )
            return
        row["retry_count"] += 1
        row["last_error"] = error

    async def cleanup_processed_events(self, older_than_hours: int) -> int:
        _check_positive(older_than_hours, "older_than_hours")
        cutoff = datetime.now(UTC) - timedelta(hours=older_than_hours)
        expired = [
            event_id
            for event_id, row in self._rows.items()
            if row["processed"] and row["processed_at"] < cutoff
        ]
        for event_id in expired:
            del self._rows[event_id]
        return len(expired)

    async def cleanup_expired_failed_events(self, older_than_hours: int, max_retries: int) -> int:
        _check_positive(older_than_hours, "older_than_hours")
        _check_positive(max_retries, "max_retries")
        cutoff = datetime.now(UTC) - timedelta(hours=older_than_hours)
        expired = [
            event_id
            for event_id, row in self._rows.items()
            if not row["processed"]
            and row["retry_count"] >= max_retries
            and row["created_at"] < cutoff
        ]
        if expired:
            logger.warning(
                "Deleting %d expired failed outbox events",
                len(expired),
                extra={"count": len(expired), "older_than_hours": older_than_hours},
            )
        for event_id in expired:
            del self._rows[event_id]
        return len(expired)

    async def get_statistics(self, max_retries: int) -> OutboxStatistics:
        _check_positive(max_retries, "max_retries")
        rows = list(self._rows.values())
        unprocessed = [row for row in rows if not row["processed"]]
        return OutboxStatistics(
            total_events=len(rows),
            unprocessed_events=len(unprocessed),
            failed_events=sum(1 for row in unprocessed if row["retry_count"] >= max_retries),
            processed_events=len(rows) - len(unprocessed),
            oldest_unprocessed_at=min((row["created_at"] for row in unprocessed), default=None),
        )


class SQLAlchemyOutboxStore:
    """
    Outbox store for PostgreSQL (asyncpg) and SQLite (aiosqlite).

    Pass the unit of work's connection so rows are written in the same
    transaction as the aggregate; pass an engine for standalone use.

    Example:
        >>> async with engine.begin() as conn:
        ...     await SQLAlchemyOrderRepository(conn).save(order)
        ...     await SQLAlchemyOutboxStore(conn).save_event(event)
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

    @staticmethod
    def _load(row: Any) -> OutboxEvent:
        return OutboxEvent(
            event_id=UUID(row.event_id),
            event_type=row.event_type,
            aggregate_id=row.aggregate_id,
            aggregate_type=row.aggregate_type,
            payload=row.payload,
            headers=dict(row.headers or {}),
            processed=bool(row.processed),
            created_at=row.created_at,
            processed_at=row.processed_at,
            retry_count=row.retry_count,
            last_error=row.last_error,
        )

    async def save_event(
        self,
        event: DomainEvent,
        aggregate_id: str | None = None,
        aggregate_type: str | None = None,
    ) -> OutboxEvent:
        outbox_event = OutboxEvent.from_domain_event(event, aggregate_id, aggregate_type)
        with self._tracer.span(
            "payrelay.outbox.save_event",
            {
                ATTR_EVENT_ID: str(outbox_event.event_id),
                ATTR_EVENT_TYPE: outbox_event.event_type,
                ATTR_AGGREGATE_ID: outbox_event.aggregate_id,
                ATTR_AGGREGATE_TYPE: outbox_event.aggregate_type,
                ATTR_DB_SYSTEM: self._db_system,
                ATTR_DB_OPERATION: "INSERT",
            },
        ):
            stmt = insert(outbox_events).values(
                event_id=str(outbox_event.event_id),
                event_type=outbox_event.event_type,
                aggregate_id=outbox_event.aggregate_id,
                aggregate_type=outbox_event.aggregate_type,
                payload=outbox_event.payload,
                headers=outbox_event.headers,
                processed=False,
                created_at=outbox_event.created_at,
                retry_count=0,
            )
            try:
                async with connection_scope(self._bind) as conn:
                    await conn.execute(stmt)
            except IntegrityError as e:
                raise ValidationError(
                    f"event {outbox_event.event_id} is already in the outbox", field="event_id"
                ) from e
            logger.debug(
                "Saved %s to outbox",
                outbox_event.event_type,
                extra={
                    "event_id": str(outbox_event.event_id),
                    "aggregate_id": outbox_event.aggregate_id,
                },
            )
            return outbox_event

    async def get_event(self, event_id: UUID) -> OutboxEvent | None:
        query = select(outbox_events).where(outbox_events.c.event_id == str(event_id))
        async with connection_scope(self._bind, transactional=False) as conn:
            row = (await conn.execute(query)).first()
        return self._load(row) if row is not None else None

    async def get_unprocessed_events(self, limit: int = 100) -> list[OutboxEvent]:
        _check_limit(limit)
        query = (
            select(outbox_events)
            .where(outbox_events.c.processed.is_(False))
            .order_by(outbox_events.c.created_at)
            .limit(limit)
        )
        async with connection_scope(self._bind, transactional=False) as conn:
            rows = (await conn.execute(query)).fetchall()
        return [self._load(row) for row in rows]

    async def get_retryable_events(self, max_retries: int, limit: int = 100) -> list[OutboxEvent]:
        _check_positive(max_retries, "max_retries")
        _check_limit(limit)
        with self._tracer.span(
            "payrelay.outbox.get_retryable_events",
            {
                ATTR_MAX_RETRIES: max_retries,
                ATTR_DB_SYSTEM: self._db_system,
                ATTR_DB_OPERATION: "SELECT",
            },
        ) as span:
            query = (
                select(outbox_events)
                .where(
                    outbox_events.c.processed.is_(False),
                    outbox_events.c.retry_count < max_retries,
                )
                .order_by(outbox_events.c.created_at)
                .limit(limit)
            )
            query = for_update(query, self._bind)
            async with connection_scope(self._bind) as conn:
                rows = (await conn.execute(query)).fetchall()
            events = [self._load(row) for row in rows]
            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(events))
            return events

    async def mark_event_as_processed(self, event_id: UUID) -> None:
        stmt = (
            update(outbox_events)
            .where(outbox_events.c.event_id == str(event_id))
            .values(processed=True, processed_at=datetime.now(UTC))
        )
        async with connection_scope(self._bind) as conn:
            result = await conn.execute(stmt)
        if result.rowcount == 0:
            raise OutboxEventNotFoundError(event_id)

    async def record_event_failure(self, event_id: UUID, error: str) -> None:
        stmt = (
            update(outbox_events)
            .where(outbox_events.c.event_id == str(event_id))
            .values(retry_count=outbox_events.c.retry_count + 1, last_error=error)
        )
        async with connection_scope(self._bind) as conn:
            result = await conn.execute(stmt)
        if result.rowcount == 0:
            logger.warning(
                "Cannot record failure for missing outbox event %s",
                event_id,
                extra={"event_id": str(event_id), "error": error},
            )

    async def cleanup_processed_events(self, older_than_hours: int) -> int:
        _check_positive(older_than_hours, "older_than_hours")
        cutoff = datetime.now(UTC) - timedelta(hours=older_than_hours)
        stmt = delete(outbox_events).where(
            outbox_events.c.processed.is_(True),
            outbox_events.c.processed_at < cutoff,
        )
        async with connection_scope(self._bind) as conn:
            result = await conn.execute(stmt)
        return result.rowcount or 0

    async def cleanup_expired_failed_events(self, older_than_hours: int, max_retries: int) -> int:
        _check_positive(older_than_hours, "older_than_hours")
        _check_positive(max_retries, "max_retries")
        cutoff = datetime.now(UTC) - timedelta(hours=older_than_hours)
        condition = and_(
            outbox_events.c.processed.is_(False),
            outbox_events.c.retry_count >= max_retries,
            outbox_events.c.created_at < cutoff,
        )
        async with connection_scope(self._bind) as conn:
            count = (
                await conn.execute(select(func.count()).select_from(outbox_events).where(condition))
            ).scalar_one()
            if count == 0:
                return 0
            logger.warning(
                "Deleting %d expired failed outbox events",
                count,
                extra={"count": count, "older_than_hours": older_than_hours},
            )
            result = await conn.execute(delete(outbox_events).where(condition))
        return result.rowcount or 0

    async def get_statistics(self, max_retries: int) -> OutboxStatistics:
        _check_positive(max_retries, "max_retries")
        unprocessed = outbox_events.c.processed.is_(False)
        query = select(
            func.count(),
            func.count().filter(unprocessed),
            func.count().filter(and_(unprocessed, outbox_events.c.retry_count >= max_retries)),
            func.min(outbox_events.c.created_at).filter(unprocessed),
        ).select_from(outbox_events)
        async with connection_scope(self._bind, transactional=False) as conn:
            total, pending, failed, oldest = (await conn.execute(query)).one()
        if isinstance(oldest, str):
            oldest = datetime.fromisoformat(oldest)
        if oldest is not None and oldest.tzinfo is None:
            oldest = oldest.replace(tzinfo=UTC)
        return OutboxStatistics(
            total_events=total or 0,
            unprocessed_events=pending or 0,
            failed_events=failed or 0,
            processed_events=(total or 0) - (pending or 0),
            oldest_unprocessed_at=oldest,
        )


__all__ = [
    "OutboxEvent",
    "OutboxStatistics",
    "OutboxStore",
    "InMemoryOutboxStore",
    "SQLAlchemyOutboxStore",
    "HEADER_SCHEMA_VERSION",
]
