"""
Composition root.

Wires the services of each side to a unit-of-work factory and a transport
and schedules their periodic tasks:

==================  ===================================  ============
Task                Function                             Side
==================  ===================================  ============
outbox.publish      OutboxPublisher.publish_pending...   both
outbox.cleanup      OutboxPublisher.cleanup_old_events   both
outbox.statistics   OutboxPublisher.log_statistics       both
reconciliation      ReconciliationService.reconcile      order
==================  ===================================  ============

Several instances of either side may run against the same database: the
publisher and the reconciler claim rows with locking reads.

Example:
    >>> engine = create_relay_engine("postgresql+asyncpg://localhost/orders")
    >>> runtime = OrderSideRuntime.build(sqlalchemy_unit_of_work_factory(engine), transport)
    >>> async with runtime:
    ...     order = await runtime.orders.create_order("cust-1", Money.of("10", "USD"))
    ...     await runtime.orders.request_payment(order.id)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from types import TracebackType
from typing import Self

from payrelay.aggregates.base import utc_now
from payrelay.config import RelayConfig
from payrelay.consumers import payment_confirmation_consumer, payment_request_consumer
from payrelay.events.dispatcher import LocalEventDispatcher
from payrelay.observability import Tracer, create_tracer
from payrelay.orders.confirmations import PaymentConfirmationHandler
from payrelay.orders.service import OrderService
from payrelay.outbox.converter import MessageConverter
from payrelay.outbox.publisher import OutboxPublisher
from payrelay.payments.gateway import PaymentGateway
from payrelay.payments.service import PaymentService
from payrelay.reconciliation.service import ReconciliationService
from payrelay.repositories.unit_of_work import UnitOfWorkFactory
from payrelay.scheduling import PeriodicTask, TaskRunner
from payrelay.transport.interface import Transport

logger = logging.getLogger(__name__)


def _outbox_tasks(publisher: OutboxPublisher) -> list[PeriodicTask]:
    config = publisher.config
    return [
        PeriodicTask("outbox.publish", config.poll_interval, publisher.publish_pending_events),
        PeriodicTask(
            "outbox.cleanup",
            config.cleanup_interval,
            publisher.cleanup_old_events,
            initial_delay=config.cleanup_interval,
        ),
        PeriodicTask(
            "outbox.statistics",
            config.statistics_interval,
            publisher.log_statistics,
            initial_delay=config.statistics_interval,
        ),
    ]


class _Runtime(ABC):
    transport: Transport
    runner: TaskRunner
    config: RelayConfig

    @abstractmethod
    async def _subscribe(self) -> None:
        """Register this side's consumers with the transport."""

    async def start(self) -> None:
        await self._subscribe()
        self.runner.start()
        logger.info("%s started", type(self).__name__)

    async def stop(self) -> None:
        await self.runner.stop()
        logger.info("%s stopped", type(self).__name__)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


@dataclass
class OrderSideRuntime(_Runtime):
    """Order commands, confirmation consumer, outbox publisher and reconciler."""

    config: RelayConfig
    transport: Transport
    dispatcher: LocalEventDispatcher
    orders: OrderService
    confirmations: PaymentConfirmationHandler
    publisher: OutboxPublisher
    reconciliation: ReconciliationService
    runner: TaskRunner

    @classmethod
    def build(
        cls,
        uow_factory: UnitOfWorkFactory,
        transport: Transport,
        config: RelayConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
    ) -> OrderSideRuntime:
        config = config or RelayConfig()
        tracer = tracer or create_tracer(__name__, config.enable_tracing)
        converter = MessageConverter(config.messaging)
        dispatcher = LocalEventDispatcher(tracer=tracer)

        orders = OrderService(
            uow_factory,
            reconciliation=config.reconciliation,
            converter=converter,
            dispatcher=dispatcher,
            clock=clock,
            tracer=tracer,
        )
        confirmations = PaymentConfirmationHandler(
            uow_factory, dispatcher=dispatcher, clock=clock, tracer=tracer
        )
        publisher = OutboxPublisher(
            uow_factory, transport, converter=converter, config=config.outbox, tracer=tracer
        )
        reconciliation = ReconciliationService(
            uow_factory,
            transport,
            config=config.reconciliation,
            converter=converter,
            dispatcher=dispatcher,
            publish_timeout=config.outbox.publish_timeout,
            clock=clock,
            tracer=tracer,
        )

        runner = TaskRunner(_outbox_tasks(publisher))
        runner.add(
            PeriodicTask(
                "reconciliation", config.reconciliation.interval, reconciliation.reconcile
            )
        )
        runner.add(
            PeriodicTask(
                "reconciliation.statistics",
                config.outbox.statistics_interval,
                reconciliation.log_statistics,
                initial_delay=config.outbox.statistics_interval,
            )
        )
        return cls(
            config=config,
            transport=transport,
            dispatcher=dispatcher,
            orders=orders,
            confirmations=confirmations,
            publisher=publisher,
            reconciliation=reconciliation,
            runner=runner,
        )

    async def _subscribe(self) -> None:
        await self.transport.subscribe(
            self.config.messaging.payment_confirmation_destination,
            payment_confirmation_consumer(self.confirmations),
        )


@dataclass
class PaymentSideRuntime(_Runtime):
    """Payment request consumer, payment service and outbox publisher."""

    config: RelayConfig
    transport: Transport
    dispatcher: LocalEventDispatcher
    payments: PaymentService
    publisher: OutboxPublisher
    runner: TaskRunner

    @classmethod
    def build(
        cls,
        uow_factory: UnitOfWorkFactory,
        transport: Transport,
        gateway: PaymentGateway,
        config: RelayConfig | None = None,
        *,
        tracer: Tracer | None = None,
    ) -> PaymentSideRuntime:
        config = config or RelayConfig()
        tracer = tracer or create_tracer(__name__, config.enable_tracing)
        converter = MessageConverter(config.messaging)
        dispatcher = LocalEventDispatcher(tracer=tracer)

        payments = PaymentService(
            uow_factory,
            gateway,
            config=config.payments,
            messaging=config.messaging,
            converter=converter,
            dispatcher=dispatcher,
            tracer=tracer,
        )
        publisher = OutboxPublisher(
            uow_factory, transport, converter=converter, config=config.outbox, tracer=tracer
        )
        return cls(
            config=config,
            transport=transport,
            dispatcher=dispatcher,
            payments=payments,
            publisher=publisher,
            runner=TaskRunner(_outbox_tasks(publisher)),
        )

    async def _subscribe(self) -> None:
        await self.transport.subscribe(
            self.config.messaging.payment_request_destination,
            payment_request_consumer(self.payments),
        )


__all__ = ["OrderSideRuntime", "PaymentSideRuntime"]
