"""
Requester-side reconciliation of unanswered payment requests.

Each tick scans the request records that are still SENT and past their
``next_attempt_at``. Every due record is handled in its own unit of work:
it is locked, checked against the order, and either re-driven under a
fresh transaction id or marked EXHAUSTED once ``max_retry_attempts``
retries have gone unanswered. The re-drive is committed before the new
request is published, and the publish outcome is appended to the retry
history afterwards, so a crash in between leaves a record that is simply
due again later.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4

from payrelay.aggregates.base import require_text, utc_now
from payrelay.aggregates.order import Order, OrderStatus
from payrelay.config import MessagingConfig, ReconciliationConfig
from payrelay.events.base import DomainEvent
from payrelay.events.dispatcher import LocalEventDispatcher
from payrelay.events.payment import PaymentRequestedEvent
from payrelay.messages import PaymentRequest
from payrelay.observability import Tracer, create_tracer
from payrelay.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_EVENT_COUNT,
    ATTR_ORDER_ID,
    ATTR_RESULT_KIND,
    ATTR_RETRY_COUNT,
    ATTR_TRANSACTION_ID,
)
from payrelay.outbox.converter import MessageConverter
from payrelay.reconciliation.backoff import next_attempt_at
from payrelay.repositories.requests import (
    PaymentRequestRecord,
    RequestStatus,
    RetryOutcome,
    RetryRecord,
    RetryStatistics,
)
from payrelay.repositories.unit_of_work import UnitOfWork, UnitOfWorkFactory
from payrelay.results import Ok
from payrelay.transport.interface import Transport, deliver

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Payment confirmation timed out"
MANUAL_RETRY_REASON = "Manual payment retry"


class ReconcileOutcome(str, Enum):
    RETRIED = "RETRIED"
    EXHAUSTED = "EXHAUSTED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome for one order.

    ``published`` is only meaningful for RETRIED: False means the new
    request was committed but the transport rejected it, and the record
    will come due again.
    """

    order_id: str
    outcome: ReconcileOutcome
    message: str = ""
    transaction_id: str | None = None
    attempt_number: int | None = None
    published: bool = False


@dataclass
class ReconciliationReport:
    due: int = 0
    retried: int = 0
    exhausted: int = 0
    skipped: int = 0
    failed: int = 0
    publish_failed: int = 0
    results: list[ReconcileResult] = field(default_factory=list)

    def add(self, result: ReconcileResult) -> None:
        self.results.append(result)
        match result.outcome:
            case ReconcileOutcome.RETRIED:
                self.retried += 1
                if not result.published:
                    self.publish_failed += 1
            case ReconcileOutcome.EXHAUSTED:
                self.exhausted += 1
            case ReconcileOutcome.SKIPPED:
                self.skipped += 1
            case ReconcileOutcome.FAILED:
                self.failed += 1


@dataclass
class _Redrive:
    """A committed re-drive waiting to be published."""

    order_id: str
    attempt_number: int
    transaction_id: str
    request: PaymentRequest
    local_events: list[DomainEvent]


class ReconciliationService:
    """
    Re-drives payment requests whose confirmation never arrived.

    Example:
        >>> service = ReconciliationService(uow_factory, transport)
        >>> report = await service.reconcile()
        >>> report.retried, report.exhausted
        (2, 0)
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        transport: Transport,
        *,
        config: ReconciliationConfig | None = None,
        messaging: MessagingConfig | None = None,
        converter: MessageConverter | None = None,
        dispatcher: LocalEventDispatcher | None = None,
        publish_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
        transaction_ids: Callable[[], str] = lambda: str(uuid4()),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._uow_factory = uow_factory
        self._transport = transport
        self._config = config or ReconciliationConfig()
        self._converter = converter or MessageConverter(messaging)
        self._dispatcher = dispatcher
        self._publish_timeout = publish_timeout
        self._clock = clock
        self._transaction_ids = transaction_ids
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def config(self) -> ReconciliationConfig:
        return self._config

    async def reconcile(self) -> ReconciliationReport:
        """Run one reconciliation tick over the due request records."""
        now = self._clock()
        report = ReconciliationReport()
        with self._tracer.span(
            "payrelay.reconciliation.reconcile", {ATTR_BATCH_SIZE: self._config.batch_size}
        ) as span:
            async with self._uow_factory() as uow:
                due = await uow.requests.find_due(now, limit=self._config.batch_size)
            report.due = len(due)

            for record in due:
                try:
                    result = await self._reconcile_one(record.order_id, now)
                except Exception as e:
                    logger.error(
                        "Reconciliation failed for order %s: %s",
                        record.order_id,
                        e,
                        exc_info=True,
                        extra={"order_id": record.order_id, "error": str(e)},
                    )
                    result = ReconcileResult(record.order_id, ReconcileOutcome.FAILED, str(e))
                report.add(result)

            if span:
                span.set_attribute(ATTR_EVENT_COUNT, report.due)

        if report.due:
            logger.info(
                "Reconciliation processed %d due requests: %d retried, %d exhausted, "
                "%d skipped, %d failed",
                report.due,
                report.retried,
                report.exhausted,
                report.skipped,
                report.failed,
                extra={
                    "due": report.due,
                    "retried": report.retried,
                    "exhausted": report.exhausted,
                    "skipped": report.skipped,
                    "failed": report.failed,
                    "publish_failed": report.publish_failed,
                },
            )
        else:
            logger.debug("No payment requests due for reconciliation")
        return report

    async def _reconcile_one(self, order_id: str, now: datetime) -> ReconcileResult:
        async with self._uow_factory() as uow:
            record = await uow.requests.get_for_update(order_id)
            if record is None or not record.is_due(now):
                logger.debug("Request for order %s no longer due", order_id)
                return ReconcileResult(order_id, ReconcileOutcome.SKIPPED, "not due")

            order = await uow.orders.find_by_id(order_id)
            if (
                order is None
                or order.status is not OrderStatus.PAYMENT_PENDING
                or order.transaction_id != record.transaction_id
            ):
                logger.warning(
                    "Skipping request for order %s: order is %s on transaction %s",
                    order_id,
                    order.status.value if order else "missing",
                    order.transaction_id if order else None,
                    extra={"order_id": order_id, "transaction_id": record.transaction_id},
                )
                return ReconcileResult(
                    order_id, ReconcileOutcome.SKIPPED, "order no longer awaiting this request"
                )

            if record.retry_count >= self._config.max_retry_attempts:
                record.resolve(RequestStatus.EXHAUSTED, now)
                await uow.requests.save(record)
                logger.error(
                    "Payment for order %s unconfirmed after %d retries; manual intervention "
                    "required",
                    order_id,
                    record.retry_count,
                    extra={
                        "order_id": order_id,
                        "transaction_id": record.transaction_id,
                        "retry_count": record.retry_count,
                    },
                )
                return ReconcileResult(
                    order_id,
                    ReconcileOutcome.EXHAUSTED,
                    "maximum retry attempts reached",
                    transaction_id=record.transaction_id,
                )

            redrive = await self._redrive(uow, order, record, now, TIMEOUT_REASON)

        return await self._publish(redrive, now)

    async def _redrive(
        self,
        uow: UnitOfWork,
        order: Order,
        record: PaymentRequestRecord | None,
        now: datetime,
        reason: str,
    ) -> _Redrive:
        retry_count = (record.retry_count if record else 0) + 1
        attempt = await uow.requests.next_attempt_number(order.id)
        transaction_id = self._transaction_ids()

        if order.status is OrderStatus.PAYMENT_PENDING:
            order.fail_payment(reason)
        order.retry_payment(transaction_id)
        await uow.orders.save(order)
        events = order.drain_events()

        updated = PaymentRequestRecord(
            order_id=order.id,
            transaction_id=transaction_id,
            status=RequestStatus.SENT,
            sent_at=now,
            retry_count=retry_count,
            next_attempt_at=next_attempt_at(now, retry_count, self._config),
            last_retry_at=now,
        )
        if record is not None and record.status.is_open:
            await uow.requests.save(updated)
        else:
            await uow.requests.add(updated)

        requested = next(e for e in events if isinstance(e, PaymentRequestedEvent))
        return _Redrive(
            order_id=order.id,
            attempt_number=attempt,
            transaction_id=transaction_id,
            request=self._converter.payment_request(requested, order),
            local_events=[e for e in events if not self._converter.is_routed(e)],
        )

    async def _publish(self, redrive: _Redrive, now: datetime) -> ReconcileResult:
        if self._dispatcher is not None:
            await self._dispatcher.dispatch(redrive.local_events)

        with self._tracer.span(
            "payrelay.reconciliation.retry",
            {
                ATTR_ORDER_ID: redrive.order_id,
                ATTR_TRANSACTION_ID: redrive.transaction_id,
                ATTR_RETRY_COUNT: redrive.attempt_number,
            },
        ) as span:
            result = await deliver(
                self._transport,
                self._converter.config.payment_request_destination,
                redrive.request,
                message_id=redrive.transaction_id,
                timeout=self._publish_timeout,
                tracer=self._tracer,
            )
            if span:
                span.set_attribute(ATTR_RESULT_KIND, result.kind)

        published = isinstance(result, Ok)
        history = RetryRecord(
            order_id=redrive.order_id,
            attempt_number=redrive.attempt_number,
            transaction_id=redrive.transaction_id,
            attempted_at=now,
            outcome=RetryOutcome.PUBLISHED if published else RetryOutcome.PUBLISH_FAILED,
            error=None if published else result.error,
        )
        try:
            async with self._uow_factory() as uow:
                await uow.requests.append_retry(history)
        except Exception as e:
            logger.error(
                "Failed to record retry %d for order %s: %s",
                redrive.attempt_number,
                redrive.order_id,
                e,
                exc_info=True,
                extra={"order_id": redrive.order_id, "error": str(e)},
            )

        logger.info(
            "Payment retry %d for order %s issued as %s (%s)",
            redrive.attempt_number,
            redrive.order_id,
            redrive.transaction_id,
            history.outcome.value,
            extra={
                "order_id": redrive.order_id,
                "transaction_id": redrive.transaction_id,
                "attempt_number": redrive.attempt_number,
                "outcome": history.outcome.value,
            },
        )
        return ReconcileResult(
            redrive.order_id,
            ReconcileOutcome.RETRIED,
            "retry issued" if published else f"retry publish failed: {result.error}",
            transaction_id=redrive.transaction_id,
            attempt_number=redrive.attempt_number,
            published=published,
        )

    async def manual_retry(self, order_id: str) -> ReconcileResult:
        """
        Re-drive an order's payment immediately.

        Ignores ``next_attempt_at`` and the retry limit, so it also revives
        EXHAUSTED requests. Pending orders are failed first, failed orders
        are retried directly; any other status is skipped.

        Raises:
            ValidationError: If ``order_id`` is blank
            AggregateNotFoundError: If the order does not exist
        """
        order_id = require_text(order_id, "order_id")
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id)
            if order.status not in (OrderStatus.PAYMENT_PENDING, OrderStatus.PAYMENT_FAILED):
                logger.info(
                    "Manual retry skipped for order %s in status %s",
                    order_id,
                    order.status.value,
                    extra={"order_id": order_id},
                )
                return ReconcileResult(
                    order_id,
                    ReconcileOutcome.SKIPPED,
                    f"Order cannot be retried in current status: {order.status.value}",
                )
            record = await uow.requests.get_for_update(order_id)
            redrive = await self._redrive(uow, order, record, now, MANUAL_RETRY_REASON)

        logger.info("Manual payment retry for order %s", order_id, extra={"order_id": order_id})
        return await self._publish(redrive, now)

    async def get_statistics(self) -> RetryStatistics:
        async with self._uow_factory() as uow:
            return await uow.requests.get_statistics()

    async def get_retry_history(self, order_id: str) -> list[RetryRecord]:
        async with self._uow_factory() as uow:
            return await uow.requests.get_retry_history(order_id)

    async def log_statistics(self) -> RetryStatistics:
        statistics = await self.get_statistics()
        logger.info(
            "Payment request statistics: %d active, %d confirmed, %d exhausted",
            statistics.active,
            statistics.confirmed,
            statistics.exhausted,
            extra={
                "pending": statistics.pending,
                "retrying": statistics.retrying,
                "confirmed": statistics.confirmed,
                "failed": statistics.failed,
                "exhausted": statistics.exhausted,
                "cancelled": statistics.cancelled,
                "success_rate": statistics.success_rate,
            },
        )
        return statistics


__all__ = [
    "ReconciliationService",
    "ReconciliationReport",
    "ReconcileResult",
    "ReconcileOutcome",
    "TIMEOUT_REASON",
]
