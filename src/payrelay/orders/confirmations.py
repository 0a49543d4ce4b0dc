"""
Applying payment confirmations to orders.

Confirmations arrive at least once, so a confirmation for an order that is
already resolved on the same transaction is acknowledged without effect.
A confirmation for a different transaction than the order's current one
is never applied.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from payrelay.aggregates.base import utc_now
from payrelay.aggregates.order import Order, OrderStatus
from payrelay.events.dispatcher import LocalEventDispatcher
from payrelay.exceptions import TransactionMismatchError
from payrelay.hooks import CommandHook, LoggingCommandHook, hooked
from payrelay.messages import PaymentConfirmation
from payrelay.observability import Tracer, create_tracer
from payrelay.repositories.requests import RequestStatus
from payrelay.repositories.unit_of_work import UnitOfWorkFactory

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment failed"

# Request records a confirmation may still resolve. EXHAUSTED records
# accept a late confirmation for their transaction.
_RESOLVABLE = (RequestStatus.SENT, RequestStatus.EXHAUSTED)


class PaymentConfirmationHandler:
    """
    Confirms or fails orders from payment confirmations.

    Example:
        >>> handler = PaymentConfirmationHandler(uow_factory)
        >>> order = await handler.handle(confirmation)
        >>> order.status
        <OrderStatus.PAYMENT_CONFIRMED: 'PAYMENT_CONFIRMED'>
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        *,
        dispatcher: LocalEventDispatcher | None = None,
        hooks: Sequence[CommandHook] | None = None,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._uow_factory = uow_factory
        self._dispatcher = dispatcher or LocalEventDispatcher(enable_tracing=enable_tracing)
        self._hooks = list(hooks) if hooks is not None else [LoggingCommandHook()]
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @staticmethod
    def _already_applied(order: Order, confirmation: PaymentConfirmation) -> bool:
        if confirmation.is_success:
            return order.status is OrderStatus.PAYMENT_CONFIRMED
        return order.status is OrderStatus.PAYMENT_FAILED

    @hooked("handle_payment_confirmation")
    async def handle(self, confirmation: PaymentConfirmation) -> Order:
        """
        Apply ``confirmation`` to its order.

        Raises:
            AggregateNotFoundError: If the order does not exist
            TransactionMismatchError: If the confirmation is for a transaction
                the order is not waiting on
            InvalidStateTransitionError: If the order cannot take the outcome
        """
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.orders.get(confirmation.order_id)
            if order.transaction_id != confirmation.transaction_id:
                raise TransactionMismatchError(
                    order.id, order.transaction_id, confirmation.transaction_id
                )

            if self._already_applied(order, confirmation):
                logger.info(
                    "Confirmation for transaction %s already applied to order %s",
                    confirmation.transaction_id,
                    order.id,
                    extra={
                        "order_id": order.id,
                        "transaction_id": confirmation.transaction_id,
                        "status": order.status.value,
                    },
                )
                return order

            if confirmation.is_success:
                order.confirm_payment(confirmation.payment_id or "")
                resolution = RequestStatus.CONFIRMED
            else:
                order.fail_payment(confirmation.error_message or DEFAULT_FAILURE_REASON)
                resolution = RequestStatus.FAILED
            await uow.orders.save(order)
            events = order.drain_events()

            record = await uow.requests.get_for_update(order.id)
            if (
                record is not None
                and record.transaction_id == confirmation.transaction_id
                and record.status in _RESOLVABLE
            ):
                record.resolve(resolution, now)
                await uow.requests.save(record)

        await self._dispatcher.dispatch(events)
        logger.info(
            "Order %s payment %s on transaction %s",
            order.id,
            "confirmed" if confirmation.is_success else "failed",
            confirmation.transaction_id,
            extra={
                "order_id": order.id,
                "transaction_id": confirmation.transaction_id,
                "payment_id": confirmation.payment_id,
            },
        )
        return order


__all__ = ["PaymentConfirmationHandler", "DEFAULT_FAILURE_REASON"]
