"""
Domain-event-to-message conversion.

Only events that cross the service boundary have a route:

==========  =======================  ===========================
Aggregate   Event                    Destination
==========  =======================  ===========================
Order       PaymentRequestedEvent    payment request destination
Payment     PaymentProcessedEvent    confirmation destination
Payment     PaymentFailedEvent       confirmation destination
==========  =======================  ===========================

Everything else is handled in-process by the local dispatcher. The message
builders are pure functions of the event and the aggregate; :meth:`convert`
only adds the aggregate lookup.
"""

import logging
from collections.abc import Sequence
from typing import Protocol

from payrelay.aggregates.order import Order
from payrelay.aggregates.payment import Payment
from payrelay.config import MessagingConfig
from payrelay.events.base import DomainEvent
from payrelay.events.payment import (
    PaymentFailedEvent,
    PaymentProcessedEvent,
    PaymentRequestedEvent,
)
from payrelay.exceptions import AggregateNotFoundError, RoutingError
from payrelay.messages import (
    ConfirmationStatus,
    PaymentConfirmation,
    PaymentRequest,
    WireMessage,
)
from payrelay.repositories.outbox import OutboxStore
from payrelay.repositories.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class AggregateLookup(Protocol):
    async def find_order(self, order_id: str) -> Order | None: ...

    async def find_payment(self, payment_id: str) -> Payment | None: ...


class UnitOfWorkLookup:
    """Resolves aggregates through the repositories of an open unit of work."""

    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow

    async def find_order(self, order_id: str) -> Order | None:
        return await self._uow.orders.find_by_id(order_id)

    async def find_payment(self, payment_id: str) -> Payment | None:
        return await self._uow.payments.find_by_id(payment_id)


class MessageConverter:
    """
    Routes events to destinations and builds their wire messages.

    Example:
        >>> converter = MessageConverter(MessagingConfig())
        >>> converter.route(order_requested_event)
        'payment.requests'
        >>> destination, message = await converter.convert(event, UnitOfWorkLookup(uow))
    """

    def __init__(self, config: MessagingConfig | None = None) -> None:
        self._config = config or MessagingConfig()
        self._routes: dict[tuple[str, str], str] = {
            (Order.aggregate_type, PaymentRequestedEvent.__name__): (
                self._config.payment_request_destination
            ),
            (Payment.aggregate_type, PaymentProcessedEvent.__name__): (
                self._config.payment_confirmation_destination
            ),
            (Payment.aggregate_type, PaymentFailedEvent.__name__): (
                self._config.payment_confirmation_destination
            ),
        }

    @property
    def config(self) -> MessagingConfig:
        return self._config

    def route(self, event: DomainEvent) -> str | None:
        """Destination for ``event``, or None when it is handled locally."""
        return self._routes.get((event.aggregate_type, event.event_type))

    def is_routed(self, event: DomainEvent) -> bool:
        return self.route(event) is not None

    def payment_request(self, event: PaymentRequestedEvent, order: Order) -> PaymentRequest:
        return PaymentRequest(
            transaction_id=event.transaction_id,
            order_id=order.id,
            customer_id=order.customer_id,
            amount=order.amount.amount,
            currency=order.amount.currency,
            credit_card=order.payment_method,
            billing_address=order.billing_address,
            merchant_id=self._config.merchant_id,
            description=f"Payment for order {order.id}",
            timestamp=event.occurred_on,
        )

    def payment_confirmation(
        self,
        event: PaymentProcessedEvent | PaymentFailedEvent,
        payment: Payment,
    ) -> PaymentConfirmation:
        processed_at = payment.processed_at or event.occurred_on
        if isinstance(event, PaymentProcessedEvent):
            return PaymentConfirmation(
                transaction_id=event.transaction_id,
                order_id=event.order_id,
                payment_id=event.payment_id,
                amount=event.amount,
                currency=event.currency,
                status=ConfirmationStatus.SUCCESS,
                gateway_response=payment.gateway_response,
                processed_at=processed_at,
            )
        return PaymentConfirmation(
            transaction_id=event.transaction_id,
            order_id=event.order_id,
            payment_id=event.payment_id or payment.id,
            amount=payment.amount.amount,
            currency=payment.amount.currency,
            status=ConfirmationStatus.FAILED,
            gateway_response=payment.gateway_response,
            error_message=event.reason,
            processed_at=processed_at,
        )

    async def convert(
        self, event: DomainEvent, lookup: AggregateLookup
    ) -> tuple[str, WireMessage]:
        """
        Route ``event`` and build its message.

        Raises:
            RoutingError: If the event has no route
            AggregateNotFoundError: If the referenced aggregate is missing
        """
        destination = self.route(event)
        if destination is None:
            raise RoutingError(event.event_type, event.aggregate_type)

        if isinstance(event, PaymentRequestedEvent):
            order = await lookup.find_order(event.order_id)
            if order is None:
                raise AggregateNotFoundError(event.order_id, Order.aggregate_type)
            return destination, self.payment_request(event, order)

        if isinstance(event, PaymentProcessedEvent | PaymentFailedEvent):
            payment_id = event.payment_id or event.aggregate_id
            payment = await lookup.find_payment(payment_id)
            if payment is None:
                raise AggregateNotFoundError(payment_id, Payment.aggregate_type)
            return destination, self.payment_confirmation(event, payment)

        raise RoutingError(event.event_type, event.aggregate_type)


async def stage_events(
    outbox: OutboxStore, converter: MessageConverter, events: Sequence[DomainEvent]
) -> list[DomainEvent]:
    """
    Write the routed events to the outbox and return the local ones.

    Must run inside the unit of work that saved the aggregate.
    """
    local: list[DomainEvent] = []
    for event in events:
        if converter.is_routed(event):
            await outbox.save_event(event)
        else:
            local.append(event)
    return local


__all__ = [
    "AggregateLookup",
    "UnitOfWorkLookup",
    "MessageConverter",
    "stage_events",
]
