"""
Unit tests for PaymentConfirmationHandler.

Tests cover:
- Confirming and failing pending orders
- Redelivered confirmations acknowledged without effect
- Confirmations for a stale transaction rejected
- Request record resolution, including late confirmations
"""

import pytest
import pytest_asyncio

from payrelay.aggregates.order import OrderStatus
from payrelay.aggregates.values import Money
from payrelay.events.base import DomainEvent
from payrelay.events.dispatcher import LocalEventDispatcher
from payrelay.events.payment import PaymentConfirmedEvent, PaymentFailedEvent
from payrelay.exceptions import (
    AggregateNotFoundError,
    InvalidStateTransitionError,
    TransactionMismatchError,
)
from payrelay.messages import ConfirmationStatus, PaymentConfirmation
from payrelay.orders.confirmations import PaymentConfirmationHandler
from payrelay.orders.service import OrderService
from payrelay.reconciliation.service import ReconciliationService
from payrelay.repositories import InMemoryDatabase, RequestStatus, UnitOfWorkFactory
from tests.fixtures import FakeClock


def confirmation(
    transaction_id: str = "TXN-1",
    *,
    success: bool = True,
    order_id: str = "order-1",
    error_message: str = "Payment processing failed: DECLINED",
) -> PaymentConfirmation:
    if success:
        return PaymentConfirmation(
            transaction_id=transaction_id,
            order_id=order_id,
            payment_id="pay-1",
            amount=100,
            currency="USD",
            status=ConfirmationStatus.SUCCESS,
            gateway_response="SUCCESS",
        )
    return PaymentConfirmation(
        transaction_id=transaction_id,
        order_id=order_id,
        amount=100,
        currency="USD",
        status=ConfirmationStatus.FAILED,
        error_message=error_message,
    )


@pytest_asyncio.fixture
async def pending(order_service: OrderService, money: Money) -> str:
    await order_service.create_order("cust-1", money, order_id="order-1")
    await order_service.request_payment("order-1")
    return "order-1"


async def request_status(uow_factory: UnitOfWorkFactory, order_id: str) -> RequestStatus:
    async with uow_factory() as uow:
        record = await uow.requests.find(order_id)
    assert record is not None
    return record.status


class TestApply:
    @pytest.mark.asyncio
    async def test_success_confirms_order(
        self,
        confirmation_handler: PaymentConfirmationHandler,
        uow_factory: UnitOfWorkFactory,
        pending: str,
    ) -> None:
        order = await confirmation_handler.handle(confirmation())

        assert order.status is OrderStatus.PAYMENT_CONFIRMED
        assert order.payment_id == "pay-1"
        assert await request_status(uow_factory, pending) is RequestStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_failure_fails_order(
        self,
        confirmation_handler: PaymentConfirmationHandler,
        uow_factory: UnitOfWorkFactory,
        pending: str,
    ) -> None:
        order = await confirmation_handler.handle(
            confirmation(success=False, error_message="Payment processing failed: DECLINED")
        )

        assert order.status is OrderStatus.PAYMENT_FAILED
        assert order.transaction_id == "TXN-1"
        assert await request_status(uow_factory, pending) is RequestStatus.FAILED

    @pytest.mark.asyncio
    async def test_dispatches_domain_event(
        self,
        confirmation_handler: PaymentConfirmationHandler,
        dispatcher: LocalEventDispatcher,
        pending: str,
    ) -> None:
        seen: list[DomainEvent] = []

        async def record(event: DomainEvent) -> None:
            seen.append(event)

        dispatcher.subscribe_to_all(record)

        await confirmation_handler.handle(confirmation(success=False))

        [event] = seen
        assert isinstance(event, PaymentFailedEvent)
        assert event.reason == "Payment processing failed: DECLINED"

    @pytest.mark.asyncio
    async def test_unknown_order(self, confirmation_handler: PaymentConfirmationHandler) -> None:
        with pytest.raises(AggregateNotFoundError):
            await confirmation_handler.handle(confirmation(order_id="missing"))


class TestRedelivery:
    @pytest.mark.asyncio
    async def test_repeated_success_is_a_no_op(
        self,
        confirmation_handler: PaymentConfirmationHandler,
        dispatcher: LocalEventDispatcher,
        database: InMemoryDatabase,
        pending: str,
    ) -> None:
        seen: list[DomainEvent] = []

        async def record(event: DomainEvent) -> None:
            seen.append(event)

        dispatcher.subscribe(PaymentConfirmedEvent, record)
        await confirmation_handler.handle(confirmation())
        version = database.table("orders")[pending]["version"]

        order = await confirmation_handler.handle(confirmation())

        assert order.status is OrderStatus.PAYMENT_CONFIRMED
        assert database.table("orders")[pending]["version"] == version
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_repeated_failure_is_a_no_op(
        self, confirmation_handler: PaymentConfirmationHandler, pending: str
    ) -> None:
        failed = confirmation(success=False, error_message="declined")
        await confirmation_handler.handle(failed)

        order = await confirmation_handler.handle(failed)

        assert order.status is OrderStatus.PAYMENT_FAILED

    @pytest.mark.asyncio
    async def test_conflicting_outcome_rejected(
        self, confirmation_handler: PaymentConfirmationHandler, pending: str
    ) -> None:
        await confirmation_handler.handle(confirmation(success=False, error_message="declined"))

        with pytest.raises(InvalidStateTransitionError):
            await confirmation_handler.handle(confirmation())


class TestTransactionMatching:
    @pytest.mark.asyncio
    async def test_stale_transaction_rejected(
        self,
        confirmation_handler: PaymentConfirmationHandler,
        database: InMemoryDatabase,
        pending: str,
    ) -> None:
        with pytest.raises(TransactionMismatchError) as exc_info:
            await confirmation_handler.handle(confirmation("TXN-OLD"))

        assert exc_info.value.expected == "TXN-1"
        assert exc_info.value.actual == "TXN-OLD"
        assert database.table("orders")[pending]["status"] == OrderStatus.PAYMENT_PENDING.value

    @pytest.mark.asyncio
    async def test_confirmation_for_superseded_request_rejected(
        self,
        confirmation_handler: PaymentConfirmationHandler,
        reconciliation_service: ReconciliationService,
        pending: str,
    ) -> None:
        await reconciliation_service.manual_retry(pending)

        with pytest.raises(TransactionMismatchError):
            await confirmation_handler.handle(confirmation("TXN-1"))

        order = await confirmation_handler.handle(confirmation("TXN-2"))
        assert order.status is OrderStatus.PAYMENT_CONFIRMED


@pytest.mark.asyncio
async def test_late_confirmation_resolves_exhausted_request(
    confirmation_handler: PaymentConfirmationHandler,
    reconciliation_service: ReconciliationService,
    uow_factory: UnitOfWorkFactory,
    clock: FakeClock,
    pending: str,
) -> None:
    for _ in range(reconciliation_service.config.max_retry_attempts + 1):
        clock.advance(10_000)
        await reconciliation_service.reconcile()
    assert await request_status(uow_factory, pending) is RequestStatus.EXHAUSTED
    async with uow_factory() as uow:
        order = await uow.orders.get(pending)

    await confirmation_handler.handle(confirmation(order.transaction_id or ""))

    assert await request_status(uow_factory, pending) is RequestStatus.CONFIRMED
