"""
Requester-side order commands.

Every command loads, changes and saves the order in one unit of work. A
payment request additionally writes its outbox row and the request record
that reconciliation watches, so the request is either fully recorded or not
at all. Events without an outbound route are dispatched locally after the
commit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from uuid import uuid4

from payrelay.aggregates.base import require_text, utc_now
from payrelay.aggregates.order import Order, OrderStatus
from payrelay.aggregates.values import BillingAddress, CreditCard, Money
from payrelay.config import MessagingConfig, ReconciliationConfig
from payrelay.events.dispatcher import LocalEventDispatcher
from payrelay.hooks import CommandHook, LoggingCommandHook, hooked
from payrelay.observability import Tracer, create_tracer
from payrelay.outbox.converter import MessageConverter, stage_events
from payrelay.reconciliation.backoff import next_attempt_at
from payrelay.repositories.requests import (
    PaymentRequestRecord,
    RequestStatus,
    RetryOutcome,
    RetryRecord,
    new_record,
)
from payrelay.repositories.unit_of_work import UnitOfWorkFactory

logger = logging.getLogger(__name__)


class OrderService:
    """
    Order commands for the requesting side.

    Example:
        >>> service = OrderService(uow_factory)
        >>> order = await service.create_order("cust-1", Money.of("99.90", "USD"))
        >>> order = await service.request_payment(order.id)
        >>> order.status
        <OrderStatus.PAYMENT_PENDING: 'PAYMENT_PENDING'>
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        *,
        reconciliation: ReconciliationConfig | None = None,
        messaging: MessagingConfig | None = None,
        converter: MessageConverter | None = None,
        dispatcher: LocalEventDispatcher | None = None,
        hooks: Sequence[CommandHook] | None = None,
        clock: Callable[[], datetime] = utc_now,
        transaction_ids: Callable[[], str] = lambda: str(uuid4()),
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._uow_factory = uow_factory
        self._reconciliation = reconciliation or ReconciliationConfig()
        self._converter = converter or MessageConverter(messaging)
        self._dispatcher = dispatcher or LocalEventDispatcher(enable_tracing=enable_tracing)
        self._hooks = list(hooks) if hooks is not None else [LoggingCommandHook()]
        self._clock = clock
        self._transaction_ids = transaction_ids
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @hooked("create_order")
    async def create_order(
        self,
        customer_id: str,
        amount: Money,
        *,
        credit_card: CreditCard | None = None,
        billing_address: BillingAddress | None = None,
        order_id: str | None = None,
    ) -> Order:
        """
        Create an order in CREATED.

        Only the masked form of ``credit_card`` is kept.

        Raises:
            ValidationError: If any input is malformed
        """
        order = Order.create(
            customer_id,
            amount,
            payment_method=credit_card.masked() if credit_card else None,
            billing_address=billing_address,
            order_id=order_id,
        )
        async with self._uow_factory() as uow:
            await uow.orders.save(order)
        logger.info(
            "Created order %s for customer %s",
            order.id,
            order.customer_id,
            extra={"order_id": order.id, "customer_id": order.customer_id, "amount": str(amount)},
        )
        return order

    @hooked("request_payment")
    async def request_payment(self, order_id: str, transaction_id: str | None = None) -> Order:
        """
        Request payment for a CREATED or PAYMENT_FAILED order.

        Raises:
            AggregateNotFoundError: If the order does not exist
            InvalidStateTransitionError: If the order cannot request payment
        """
        transaction_id = transaction_id or self._transaction_ids()
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.orders.get(require_text(order_id, "order_id"))
            order.request_payment(transaction_id)
            await uow.orders.save(order)
            local_events = await stage_events(uow.outbox, self._converter, order.drain_events())
            await uow.requests.add(
                new_record(
                    order.id,
                    transaction_id,
                    now,
                    next_attempt_at(now, 0, self._reconciliation),
                )
            )

        await self._dispatcher.dispatch(local_events)
        logger.info(
            "Payment requested for order %s under transaction %s",
            order.id,
            transaction_id,
            extra={"order_id": order.id, "transaction_id": transaction_id},
        )
        return order

    @hooked("retry_payment")
    async def retry_payment(self, order_id: str) -> Order:
        """
        Retry a PAYMENT_FAILED order under a new transaction id.

        The request travels through the outbox like the first one; the
        retry history records it as QUEUED.

        Raises:
            AggregateNotFoundError: If the order does not exist
            InvalidStateTransitionError: If the order is not PAYMENT_FAILED
        """
        transaction_id = self._transaction_ids()
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.orders.get(require_text(order_id, "order_id"))
            previous = await uow.requests.get_for_update(order.id)
            order.retry_payment(transaction_id)
            await uow.orders.save(order)
            local_events = await stage_events(uow.outbox, self._converter, order.drain_events())

            retry_count = (previous.retry_count if previous else 0) + 1
            attempt = await uow.requests.next_attempt_number(order.id)
            record = PaymentRequestRecord(
                order_id=order.id,
                transaction_id=transaction_id,
                status=RequestStatus.SENT,
                sent_at=now,
                retry_count=retry_count,
                next_attempt_at=next_attempt_at(now, retry_count, self._reconciliation),
                last_retry_at=now,
            )
            if previous is not None and previous.status.is_open:
                await uow.requests.save(record)
            else:
                await uow.requests.add(record)
            await uow.requests.append_retry(
                RetryRecord(
                    order_id=order.id,
                    attempt_number=attempt,
                    transaction_id=transaction_id,
                    attempted_at=now,
                    outcome=RetryOutcome.QUEUED,
                )
            )

        await self._dispatcher.dispatch(local_events)
        return order

    @hooked("cancel_order")
    async def cancel_order(self, order_id: str, reason: str | None = None) -> Order:
        """
        Cancel a CREATED or PAYMENT_FAILED order.

        Raises:
            AggregateNotFoundError: If the order does not exist
            InvalidStateTransitionError: If the order cannot be cancelled
        """
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.orders.get(require_text(order_id, "order_id"))
            order.cancel(reason)
            await uow.orders.save(order)
            local_events = await stage_events(uow.outbox, self._converter, order.drain_events())

            record = await uow.requests.get_for_update(order.id)
            if record is not None and record.status is not RequestStatus.CANCELLED:
                record.resolve(RequestStatus.CANCELLED, now)
                await uow.requests.save(record)

        await self._dispatcher.dispatch(local_events)
        return order

    async def get_order(self, order_id: str) -> Order | None:
        async with self._uow_factory() as uow:
            return await uow.orders.find_by_id(order_id)

    async def find_orders(self, status: OrderStatus, limit: int = 100) -> list[Order]:
        async with self._uow_factory() as uow:
            return await uow.orders.find_by_status(status, limit)


__all__ = ["OrderService"]
