"""
Requester-side payment request tracking.

A :class:`PaymentRequestRecord` is the durable pending-state row for an
order's outstanding payment request. It is written in the same unit of work
as the order and its outbox row, scanned by the reconciliation service and
resolved when a confirmation arrives. Every retry appends a
:class:`RetryRecord`; retry records are never updated or deleted.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from payrelay.exceptions import NotFoundError, ValidationError
from payrelay.repositories._connection import connection_scope, for_update
from payrelay.repositories.memory import InMemoryDatabase
from payrelay.repositories.schema import payment_requests, retry_records

logger = logging.getLogger(__name__)


class RequestStatus(str, Enum):
    SENT = "SENT"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    EXHAUSTED = "EXHAUSTED"
    CANCELLED = "CANCELLED"

    @property
    def is_open(self) -> bool:
        return self is RequestStatus.SENT


class RetryOutcome(str, Enum):
    PUBLISHED = "PUBLISHED"
    PUBLISH_FAILED = "PUBLISH_FAILED"
    QUEUED = "QUEUED"


@dataclass
class PaymentRequestRecord:
    """
    Outstanding payment request of one order.

    Attributes:
        order_id: The order (one record per order)
        transaction_id: Transaction id of the most recent request
        status: SENT while awaiting a confirmation
        sent_at: When the most recent request was issued
        retry_count: Automatic retries performed so far
        next_attempt_at: When reconciliation may re-drive the request
        last_retry_at: When the most recent retry was issued
        resolved_at: When the record left SENT
    """

    order_id: str
    transaction_id: str
    status: RequestStatus
    sent_at: datetime
    retry_count: int
    next_attempt_at: datetime
    last_retry_at: datetime | None = None
    resolved_at: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return self.status is RequestStatus.SENT and self.next_attempt_at <= now

    def resolve(self, status: RequestStatus, now: datetime) -> None:
        self.status = status
        self.resolved_at = now


@dataclass(frozen=True)
class RetryRecord:
    order_id: str
    attempt_number: int
    transaction_id: str
    attempted_at: datetime
    outcome: RetryOutcome
    error: str | None = None


@dataclass(frozen=True)
class RetryStatistics:
    """
    Summary of request records.

    ``pending`` are SENT records never retried, ``retrying`` SENT records
    with at least one retry; ``success_rate`` is confirmed over all
    resolved-by-outcome records (confirmed, failed, exhausted).
    """

    pending: int = 0
    retrying: int = 0
    confirmed: int = 0
    failed: int = 0
    exhausted: int = 0
    cancelled: int = 0
    average_attempts: float = 0.0
    max_attempts: int = 0

    @property
    def total(self) -> int:
        return (
            self.pending
            + self.retrying
            + self.confirmed
            + self.failed
            + self.exhausted
            + self.cancelled
        )

    @property
    def active(self) -> int:
        return self.pending + self.retrying

    @property
    def success_rate(self) -> float:
        completed = self.confirmed + self.failed + self.exhausted
        return self.confirmed / completed if completed else 0.0


@runtime_checkable
class PaymentRequestStore(Protocol):
    async def add(self, record: PaymentRequestRecord) -> None:
        """Insert a record, replacing a resolved record of the same order."""
        ...

    async def save(self, record: PaymentRequestRecord) -> None:
        """
        Raises:
            NotFoundError: If the order has no record
        """
        ...

    async def find(self, order_id: str) -> PaymentRequestRecord | None: ...

    async def get_for_update(self, order_id: str) -> PaymentRequestRecord | None:
        """Lock and return the record; None if missing or locked by another transaction."""
        ...

    async def find_due(self, now: datetime, limit: int = 50) -> list[PaymentRequestRecord]:
        """SENT records with ``next_attempt_at <= now``, earliest first."""
        ...

    async def append_retry(self, record: RetryRecord) -> None: ...

    async def next_attempt_number(self, order_id: str) -> int:
        """Attempt number for the order's next retry record (1 when it has none)."""
        ...

    async def get_retry_history(self, order_id: str) -> list[RetryRecord]: ...

    async def get_statistics(self) -> RetryStatistics: ...


def _check_open(record: PaymentRequestRecord, existing: Any) -> None:
    if existing is not None and RequestStatus(existing["status"]).is_open:
        raise ValidationError(
            f"order {record.order_id} already has an open payment request", field="order_id"
        )


def _statistics(rows: list[tuple[str, int]]) -> RetryStatistics:
    counts: dict[str, int] = {}
    for status, retry_count in rows:
        key = status
        if status == RequestStatus.SENT.value:
            key = "retrying" if retry_count > 0 else "pending"
        counts[key] = counts.get(key, 0) + 1
    retries = [retry_count for _, retry_count in rows]
    return RetryStatistics(
        pending=counts.get("pending", 0),
        retrying=counts.get("retrying", 0),
        confirmed=counts.get(RequestStatus.CONFIRMED.value, 0),
        failed=counts.get(RequestStatus.FAILED.value, 0),
        exhausted=counts.get(RequestStatus.EXHAUSTED.value, 0),
        cancelled=counts.get(RequestStatus.CANCELLED.value, 0),
        average_attempts=sum(retries) / len(retries) if retries else 0.0,
        max_attempts=max(retries, default=0),
    )


class InMemoryPaymentRequestStore:
    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database

    @property
    def _requests(self) -> dict[str, dict[str, Any]]:
        return self._database.table("payment_requests")

    @property
    def _retries(self) -> dict[tuple[str, int], dict[str, Any]]:
        return self._database.table("retry_records")

    @staticmethod
    def _load(row: dict[str, Any]) -> PaymentRequestRecord:
        return PaymentRequestRecord(**row)

    async def add(self, record: PaymentRequestRecord) -> None:
        _check_open(record, self._requests.get(record.order_id))
        self._requests[record.order_id] = asdict(record)

    async def save(self, record: PaymentRequestRecord) -> None:
        if record.order_id not in self._requests:
            raise NotFoundError("Payment request", record.order_id)
        self._requests[record.order_id] = asdict(record)

    async def find(self, order_id: str) -> PaymentRequestRecord | None:
        row = self._requests.get(order_id)
        return self._load(row) if row is not None else None

    async def get_for_update(self, order_id: str) -> PaymentRequestRecord | None:
        return await self.find(order_id)

    async def find_due(self, now: datetime, limit: int = 50) -> list[PaymentRequestRecord]:
        records = [self._load(row) for row in self._requests.values()]
        due = sorted(
            (record for record in records if record.is_due(now)),
            key=lambda record: record.next_attempt_at,
        )
        return due[:limit]

    async def append_retry(self, record: RetryRecord) -> None:
        key = (record.order_id, record.attempt_number)
        if key in self._retries:
            raise ValidationError(
                f"attempt {record.attempt_number} already recorded for order {record.order_id}",
                field="attempt_number",
            )
        self._retries[key] = asdict(record)

    async def next_attempt_number(self, order_id: str) -> int:
        attempts = [number for owner, number in self._retries if owner == order_id]
        return max(attempts, default=0) + 1

    async def get_retry_history(self, order_id: str) -> list[RetryRecord]:
        rows = sorted(
            (row for row in self._retries.values() if row["order_id"] == order_id),
            key=lambda row: row["attempt_number"],
        )
        return [RetryRecord(**row) for row in rows]

    async def get_statistics(self) -> RetryStatistics:
        return _statistics(
            [(row["status"].value, row["retry_count"]) for row in self._requests.values()]
        )


class SQLAlchemyPaymentRequestStore:
    def __init__(self, bind: AsyncConnection | AsyncEngine) -> None:
        self._bind = bind

    @staticmethod
    def _load(row: Any) -> PaymentRequestRecord:
        return PaymentRequestRecord(
            order_id=row.order_id,
            transaction_id=row.transaction_id,
            status=RequestStatus(row.status),
            sent_at=row.sent_at,
            retry_count=row.retry_count,
            next_attempt_at=row.next_attempt_at,
            last_retry_at=row.last_retry_at,
            resolved_at=row.resolved_at,
        )

    @staticmethod
    def _values(record: PaymentRequestRecord) -> dict[str, Any]:
        return {**asdict(record), "status": record.status.value}

    async def add(self, record: PaymentRequestRecord) -> None:
        async with connection_scope(self._bind) as conn:
            existing = (
                await conn.execute(
                    select(payment_requests.c.status).where(
                        payment_requests.c.order_id == record.order_id
                    )
                )
            ).first()
            if existing is None:
                await conn.execute(insert(payment_requests).values(**self._values(record)))
                return
            _check_open(record, existing._mapping)
            await conn.execute(
                update(payment_requests)
                .where(payment_requests.c.order_id == record.order_id)
                .values(**self._values(record))
            )

    async def save(self, record: PaymentRequestRecord) -> None:
        stmt = (
            update(payment_requests)
            .where(payment_requests.c.order_id == record.order_id)
            .values(**self._values(record))
        )
        async with connection_scope(self._bind) as conn:
            result = await conn.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError("Payment request", record.order_id)

    async def find(self, order_id: str) -> PaymentRequestRecord | None:
        query = select(payment_requests).where(payment_requests.c.order_id == order_id)
        async with connection_scope(self._bind, transactional=False) as conn:
            row = (await conn.execute(query)).first()
        return self._load(row) if row is not None else None

    async def get_for_update(self, order_id: str) -> PaymentRequestRecord | None:
        query = for_update(
            select(payment_requests).where(payment_requests.c.order_id == order_id), self._bind
        )
        async with connection_scope(self._bind) as conn:
            row = (await conn.execute(query)).first()
        return self._load(row) if row is not None else None

    async def find_due(self, now: datetime, limit: int = 50) -> list[PaymentRequestRecord]:
        query = (
            select(payment_requests)
            .where(
                payment_requests.c.status == RequestStatus.SENT.value,
                payment_requests.c.next_attempt_at <= now,
            )
            .order_by(payment_requests.c.next_attempt_at)
            .limit(limit)
        )
        async with connection_scope(self._bind, transactional=False) as conn:
            rows = (await conn.execute(query)).fetchall()
        return [self._load(row) for row in rows]

    async def append_retry(self, record: RetryRecord) -> None:
        values = {**asdict(record), "outcome": record.outcome.value}
        async with connection_scope(self._bind) as conn:
            try:
                await conn.execute(insert(retry_records).values(**values))
            except IntegrityError as e:
                raise ValidationError(
                    f"attempt {record.attempt_number} already recorded for order "
                    f"{record.order_id}",
                    field="attempt_number",
                ) from e

    async def next_attempt_number(self, order_id: str) -> int:
        query = select(func.max(retry_records.c.attempt_number)).where(
            retry_records.c.order_id == order_id
        )
        async with connection_scope(self._bind, transactional=False) as conn:
            highest = (await conn.execute(query)).scalar()
        return (highest or 0) + 1

    async def get_retry_history(self, order_id: str) -> list[RetryRecord]:
        query = (
            select(retry_records)
            .where(retry_records.c.order_id == order_id)
            .order_by(retry_records.c.attempt_number)
        )
        async with connection_scope(self._bind, transactional=False) as conn:
            rows = (await conn.execute(query)).fetchall()
        return [
            RetryRecord(
                order_id=row.order_id,
                attempt_number=row.attempt_number,
                transaction_id=row.transaction_id,
                attempted_at=row.attempted_at,
                outcome=RetryOutcome(row.outcome),
                error=row.error,
            )
            for row in rows
        ]

    async def get_statistics(self) -> RetryStatistics:
        query = select(
            payment_requests.c.status,
            payment_requests.c.retry_count,
            func.count(),
        ).group_by(payment_requests.c.status, payment_requests.c.retry_count)
        async with connection_scope(self._bind, transactional=False) as conn:
            grouped = (await conn.execute(query)).fetchall()
        rows = [(status, retry_count) for status, retry_count, n in grouped for _ in range(n)]
        return _statistics(rows)


def new_record(
    order_id: str, transaction_id: str, now: datetime, next_attempt_at: datetime
) -> PaymentRequestRecord:
    return PaymentRequestRecord(
        order_id=order_id,
        transaction_id=transaction_id,
        status=RequestStatus.SENT,
        sent_at=now,
        retry_count=0,
        next_attempt_at=next_attempt_at,
    )


__all__ = [
    "RequestStatus",
    "RetryOutcome",
    "PaymentRequestRecord",
    "RetryRecord",
    "RetryStatistics",
    "PaymentRequestStore",
    "InMemoryPaymentRequestStore",
    "SQLAlchemyPaymentRequestStore",
    "new_record",
]
