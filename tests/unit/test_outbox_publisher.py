"""
Unit tests for OutboxPublisher.

Tests cover:
- Publishing claimed rows and marking them processed
- Retrying failed and timed-out publishes up to max_retries
- Fatal failures for rows that can never be published
- Batch isolation and ordering
- Cleanup and statistics
"""

from datetime import UTC, datetime, timedelta

import pytest

from payrelay.aggregates.order import Order
from payrelay.aggregates.values import Money
from payrelay.config import OutboxConfig
from payrelay.events.base import DomainEvent
from payrelay.events.payment import PaymentRequestedEvent
from payrelay.messages import PaymentRequest
from payrelay.observability import MockTracer
from payrelay.orders.service import OrderService
from payrelay.outbox.publisher import OutboxPublisher, PublishBatchResult
from payrelay.repositories import InMemoryDatabase, OutboxEvent, UnitOfWorkFactory
from payrelay.transport.memory import InMemoryTransport


class UnregisteredEvent(DomainEvent):
    aggregate_type: str = "Order"


async def pending_order(service: OrderService, money: Money, order_id: str) -> Order:
    order = await service.create_order("cust-1", money, order_id=order_id)
    return await service.request_payment(order.id)


async def outbox_rows(uow_factory: UnitOfWorkFactory) -> list[OutboxEvent]:
    async with uow_factory() as uow:
        return await uow.outbox.get_unprocessed_events(limit=1000)


async def only_row(database: InMemoryDatabase) -> dict:
    [row] = database.table("outbox_events").values()
    return row


class TestPublishPendingEvents:
    @pytest.mark.asyncio
    async def test_publishes_and_marks_processed(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        transport: InMemoryTransport,
        database: InMemoryDatabase,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")

        result = await publisher.publish_pending_events()

        assert result == PublishBatchResult(claimed=1, published=1)
        [sent] = transport.messages_for("payment.requests")
        request = PaymentRequest.from_json(sent.body)
        assert request.order_id == "order-1"
        assert request.transaction_id == "TXN-1"
        row = await only_row(database)
        assert row["processed"] is True
        assert row["processed_at"] is not None
        assert sent.message_id == str(row["event_id"])
        assert sent.headers["eventType"] == "PaymentRequestedEvent"

    @pytest.mark.asyncio
    async def test_empty_outbox(self, publisher: OutboxPublisher) -> None:
        result = await publisher.publish_pending_events()

        assert result.is_empty
        assert publisher.stats.ticks == 1

    @pytest.mark.asyncio
    async def test_processed_rows_are_not_republished(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        transport: InMemoryTransport,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")

        await publisher.publish_pending_events()
        second = await publisher.publish_pending_events()

        assert second.is_empty
        assert len(transport.published) == 1

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        transport: InMemoryTransport,
        database: InMemoryDatabase,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")
        transport.fail_next(2)

        first = await publisher.publish_pending_events()
        second = await publisher.publish_pending_events()
        third = await publisher.publish_pending_events()

        assert (first.failed, second.failed, third.published) == (1, 1, 1)
        row = await only_row(database)
        assert row["processed"] is True
        assert row["retry_count"] == 2
        assert "injected failure" in row["last_error"]
        assert len(transport.messages_for("payment.requests")) == 1

    @pytest.mark.asyncio
    async def test_stops_claiming_after_max_retries(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        transport: InMemoryTransport,
        uow_factory: UnitOfWorkFactory,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")
        transport.set_available(False)

        for _ in range(publisher.config.max_retries):
            await publisher.publish_pending_events()
        after_limit = await publisher.publish_pending_events()

        assert after_limit.is_empty
        [row] = await outbox_rows(uow_factory)
        assert row.retry_count == publisher.config.max_retries
        assert not row.processed
        statistics = await publisher.log_statistics()
        assert statistics.failed_events == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        transport: InMemoryTransport,
        database: InMemoryDatabase,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")
        transport.set_delay(publisher.config.publish_timeout * 2)

        result = await publisher.publish_pending_events()

        assert result.failed == 1
        assert result.fatal == 0
        row = await only_row(database)
        assert row["retry_count"] == 1
        assert "timed out" in row["last_error"]

    @pytest.mark.asyncio
    async def test_missing_aggregate_is_fatal(
        self,
        publisher: OutboxPublisher,
        uow_factory: UnitOfWorkFactory,
        transport: InMemoryTransport,
        database: InMemoryDatabase,
    ) -> None:
        async with uow_factory() as uow:
            await uow.outbox.save_event(
                PaymentRequestedEvent(
                    aggregate_id="ghost", order_id="ghost", transaction_id="T", customer_id="c"
                )
            )

        result = await publisher.publish_pending_events()

        assert result.fatal == 1
        assert transport.publish_attempts == 0
        row = await only_row(database)
        assert row["retry_count"] == 1
        assert "ghost" in row["last_error"]
        assert publisher.stats.fatal_failures == 1

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_fatal(
        self, publisher: OutboxPublisher, uow_factory: UnitOfWorkFactory
    ) -> None:
        async with uow_factory() as uow:
            await uow.outbox.save_event(UnregisteredEvent(aggregate_id="order-1"))

        result = await publisher.publish_pending_events()

        assert result.fatal == 1

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_fatal(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        database: InMemoryDatabase,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")
        row = await only_row(database)
        row["payload"] = '{"order_id": "order-1"}'

        result = await publisher.publish_pending_events()

        assert result.fatal == 1
        assert "unreadable outbox payload" in row["last_error"]

    @pytest.mark.asyncio
    async def test_bad_row_does_not_abort_batch(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        uow_factory: UnitOfWorkFactory,
        transport: InMemoryTransport,
        money: Money,
    ) -> None:
        async with uow_factory() as uow:
            await uow.outbox.save_event(UnregisteredEvent(aggregate_id="order-0"))
        await pending_order(order_service, money, "order-1")

        result = await publisher.publish_pending_events()

        assert result == PublishBatchResult(claimed=2, published=1, failed=1, fatal=1)
        assert len(transport.published) == 1

    @pytest.mark.asyncio
    async def test_publishes_in_creation_order(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        transport: InMemoryTransport,
        money: Money,
    ) -> None:
        for i in range(3):
            await pending_order(order_service, money, f"order-{i}")

        await publisher.publish_pending_events()

        orders = [PaymentRequest.from_json(m.body).order_id for m in transport.published]
        assert orders == ["order-0", "order-1", "order-2"]

    @pytest.mark.asyncio
    async def test_emits_spans(
        self,
        uow_factory: UnitOfWorkFactory,
        transport: InMemoryTransport,
        order_service: OrderService,
        money: Money,
    ) -> None:
        tracer = MockTracer()
        publisher = OutboxPublisher(uow_factory, transport, tracer=tracer)
        await pending_order(order_service, money, "order-1")

        await publisher.publish_pending_events()

        assert "payrelay.outbox.publish_batch" in tracer.span_names
        assert "payrelay.outbox.publish_event" in tracer.span_names
        assert "payrelay.transport.publish" in tracer.span_names


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_cleanup_removes_old_processed_rows(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        database: InMemoryDatabase,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")
        await publisher.publish_pending_events()
        row = await only_row(database)
        row["processed_at"] = datetime.now(UTC) - timedelta(
            hours=publisher.config.retention_hours + 1
        )

        removed = await publisher.cleanup_old_events()

        assert removed == 1
        assert database.count("outbox_events") == 0
        assert publisher.stats.events_cleaned == 1

    @pytest.mark.asyncio
    async def test_cleanup_keeps_recent_rows(
        self,
        publisher: OutboxPublisher,
        order_service: OrderService,
        database: InMemoryDatabase,
        money: Money,
    ) -> None:
        await pending_order(order_service, money, "order-1")
        await publisher.publish_pending_events()

        assert await publisher.cleanup_old_events() == 0
        assert database.count("outbox_events") == 1

    @pytest.mark.asyncio
    async def test_statistics_warn_over_threshold(
        self,
        uow_factory: UnitOfWorkFactory,
        transport: InMemoryTransport,
        order_service: OrderService,
        money: Money,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        publisher = OutboxPublisher(
            uow_factory, transport, config=OutboxConfig(unprocessed_alert_threshold=1)
        )
        await pending_order(order_service, money, "order-1")
        await pending_order(order_service, money, "order-2")

        with caplog.at_level("WARNING", logger="payrelay.outbox.publisher"):
            statistics = await publisher.log_statistics()

        assert statistics.unprocessed_events == 2
        assert "backlog" in caplog.text
