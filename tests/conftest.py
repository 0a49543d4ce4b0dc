"""
Shared pytest fixtures for the payrelay tests.

This module provides:
- Value fixtures (money, credit_card, billing_address)
- Test doubles (clock, transaction_ids, gateway, transport)
- In-memory storage (database, uow_factory)
- Service fixtures wired to the in-memory storage
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from payrelay.aggregates.values import BillingAddress, CreditCard, Money
from payrelay.config import MessagingConfig, OutboxConfig, PaymentConfig, ReconciliationConfig
from payrelay.events.dispatcher import LocalEventDispatcher
from payrelay.hooks import RecordingCommandHook
from payrelay.observability import NullTracer
from payrelay.orders.confirmations import PaymentConfirmationHandler
from payrelay.orders.service import OrderService
from payrelay.outbox.converter import MessageConverter
from payrelay.outbox.publisher import OutboxPublisher
from payrelay.payments.service import PaymentService
from payrelay.reconciliation.service import ReconciliationService
from payrelay.repositories import (
    InMemoryDatabase,
    UnitOfWorkFactory,
    in_memory_unit_of_work_factory,
)
from payrelay.transport.memory import InMemoryTransport
from tests.fixtures import FakeClock, FakeGateway, SequentialIds


# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


START = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)


# ============================================================================
# Values
# ============================================================================


@pytest.fixture
def money() -> Money:
    return Money.of("100.00", "USD")


@pytest.fixture
def credit_card() -> CreditCard:
    return CreditCard(
        number="4111 1111 1111 1111",
        expiry_date="12/99",
        cvv="123",
        holder_name="Jane Doe",
    )


@pytest.fixture
def billing_address() -> BillingAddress:
    return BillingAddress(street="1 Main St", city="Springfield", postal_code="12345", country="US")


# ============================================================================
# Test doubles
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def transaction_ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def hooks() -> RecordingCommandHook:
    return RecordingCommandHook()


# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture
def messaging() -> MessagingConfig:
    return MessagingConfig()


@pytest.fixture
def outbox_config() -> OutboxConfig:
    return OutboxConfig(max_retries=3, batch_size=10, publish_timeout=0.5)


@pytest.fixture
def reconciliation_config() -> ReconciliationConfig:
    return ReconciliationConfig(
        max_retry_attempts=3,
        base_retry_delay=1.0,
        confirmation_timeout=60.0,
        interval=1.0,
    )


@pytest.fixture
def payment_config() -> PaymentConfig:
    return PaymentConfig(gateway_timeout=0.5)


@pytest.fixture
def converter(messaging: MessagingConfig) -> MessageConverter:
    return MessageConverter(messaging)


# ============================================================================
# In-memory storage
# ============================================================================


@pytest.fixture
def database() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def uow_factory(database: InMemoryDatabase) -> UnitOfWorkFactory:
    return in_memory_unit_of_work_factory(database, enable_tracing=False)


@pytest.fixture
def dispatcher() -> LocalEventDispatcher:
    return LocalEventDispatcher(enable_tracing=False)


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def order_service(
    uow_factory: UnitOfWorkFactory,
    reconciliation_config: ReconciliationConfig,
    converter: MessageConverter,
    dispatcher: LocalEventDispatcher,
    hooks: RecordingCommandHook,
    clock: FakeClock,
    transaction_ids: SequentialIds,
) -> OrderService:
    return OrderService(
        uow_factory,
        reconciliation=reconciliation_config,
        converter=converter,
        dispatcher=dispatcher,
        hooks=[hooks],
        clock=clock,
        transaction_ids=transaction_ids,
        tracer=NullTracer(),
    )


@pytest.fixture
def confirmation_handler(
    uow_factory: UnitOfWorkFactory,
    dispatcher: LocalEventDispatcher,
    clock: FakeClock,
) -> PaymentConfirmationHandler:
    return PaymentConfirmationHandler(
        uow_factory, dispatcher=dispatcher, hooks=[], clock=clock, tracer=NullTracer()
    )


@pytest.fixture
def publisher(
    uow_factory: UnitOfWorkFactory,
    transport: InMemoryTransport,
    converter: MessageConverter,
    outbox_config: OutboxConfig,
) -> OutboxPublisher:
    return OutboxPublisher(
        uow_factory, transport, converter=converter, config=outbox_config, tracer=NullTracer()
    )


@pytest.fixture
def reconciliation_service(
    uow_factory: UnitOfWorkFactory,
    transport: InMemoryTransport,
    reconciliation_config: ReconciliationConfig,
    converter: MessageConverter,
    dispatcher: LocalEventDispatcher,
    clock: FakeClock,
    transaction_ids: SequentialIds,
) -> ReconciliationService:
    return ReconciliationService(
        uow_factory,
        transport,
        config=reconciliation_config,
        converter=converter,
        dispatcher=dispatcher,
        publish_timeout=0.5,
        clock=clock,
        transaction_ids=transaction_ids,
        tracer=NullTracer(),
    )


@pytest.fixture
def payment_service(
    uow_factory: UnitOfWorkFactory,
    gateway: FakeGateway,
    payment_config: PaymentConfig,
    converter: MessageConverter,
    dispatcher: LocalEventDispatcher,
    hooks: RecordingCommandHook,
) -> PaymentService:
    return PaymentService(
        uow_factory,
        gateway,
        config=payment_config,
        converter=converter,
        dispatcher=dispatcher,
        hooks=[hooks],
        tracer=NullTracer(),
    )


__all__ = [
    "AIOSQLITE_AVAILABLE",
    "START",
]
