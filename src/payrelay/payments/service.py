"""
Responder-side payment processing.

A payment request is handled in one unit of work: the transaction id is
claimed through the :class:`IdempotencyGuard`, the gateway is called, the
payment is resolved and its confirmation event is written to the outbox.
Redelivered requests find the claimed payment and get the original
outcome back without a second gateway call.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from payrelay.aggregates.base import require_text
from payrelay.aggregates.payment import Payment, PaymentStatus
from payrelay.aggregates.values import Money
from payrelay.config import MessagingConfig, PaymentConfig
from payrelay.events.dispatcher import LocalEventDispatcher
from payrelay.exceptions import ValidationError
from payrelay.hooks import CommandHook, LoggingCommandHook, hooked
from payrelay.messages import PaymentRequest
from payrelay.observability import Tracer, create_tracer
from payrelay.outbox.converter import MessageConverter, stage_events
from payrelay.payments.gateway import PaymentGateway, call_gateway, gateway_error_response
from payrelay.payments.idempotency import IdempotencyGuard
from payrelay.repositories.unit_of_work import UnitOfWorkFactory
from payrelay.results import Ok

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentOutcome:
    """
    What a payment request resolved to.

    Every receipt of the same transaction id yields an equal outcome;
    ``duplicate`` only tells whether this receipt did the work.
    """

    transaction_id: str
    order_id: str
    payment_id: str
    status: PaymentStatus
    gateway_response: str | None = None
    failure_reason: str | None = None
    duplicate: bool = field(default=False, compare=False)

    @property
    def is_success(self) -> bool:
        return self.status is PaymentStatus.SUCCESS

    @classmethod
    def of(cls, payment: Payment, *, duplicate: bool = False) -> PaymentOutcome:
        return cls(
            transaction_id=payment.transaction_id,
            order_id=payment.order_id,
            payment_id=payment.id,
            status=payment.status,
            gateway_response=payment.gateway_response,
            failure_reason=payment.failure_reason,
            duplicate=duplicate,
        )


class PaymentService:
    """
    Processes payment requests and refunds.

    Example:
        >>> service = PaymentService(uow_factory, gateway)
        >>> outcome = await service.process_payment_request(request)
        >>> outcome.status
        <PaymentStatus.SUCCESS: 'SUCCESS'>
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        *,
        config: PaymentConfig | None = None,
        messaging: MessagingConfig | None = None,
        converter: MessageConverter | None = None,
        dispatcher: LocalEventDispatcher | None = None,
        guard: IdempotencyGuard | None = None,
        hooks: Sequence[CommandHook] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._config = config or PaymentConfig()
        self._messaging = messaging or MessagingConfig()
        self._converter = converter or MessageConverter(self._messaging)
        self._dispatcher = dispatcher or LocalEventDispatcher(enable_tracing=enable_tracing)
        self._guard = guard or IdempotencyGuard()
        self._hooks = list(hooks) if hooks is not None else [LoggingCommandHook()]
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    def validate(self, request: PaymentRequest) -> Money:
        """
        Check business limits and return the request amount as Money.

        Raises:
            ValidationError: If the amount exceeds the limit or the currency
                is not supported
        """
        money = Money.of(request.amount, request.currency)
        if money.amount > self._config.max_amount:
            raise ValidationError(
                f"amount {money.amount} exceeds maximum {self._config.max_amount}",
                field="amount",
            )
        if money.currency not in self._config.supported_currencies:
            raise ValidationError(f"currency {money.currency} is not supported", field="currency")
        return money

    @hooked("process_payment")
    async def process_payment_request(self, request: PaymentRequest) -> PaymentOutcome:
        """
        Process one payment request exactly once per transaction id.

        A request that breaks a business limit is not charged: the payment
        is stored as FAILED and a FAILED confirmation goes back to the
        order owner, like a declined charge.
        """
        candidate = Payment.create(
            request.transaction_id,
            request.order_id,
            request.customer_id,
            Money.of(request.amount, request.currency),
        )

        async with self._uow_factory() as uow:
            existing = await self._guard.claim(uow, candidate)
            if existing is not None:
                return PaymentOutcome.of(existing, duplicate=True)

            try:
                amount = self.validate(request)
            except ValidationError as e:
                logger.warning(
                    "Rejecting payment request for transaction %s: %s",
                    candidate.transaction_id,
                    e.message,
                    extra={
                        "transaction_id": candidate.transaction_id,
                        "order_id": candidate.order_id,
                        "field": e.field,
                    },
                )
                candidate.reject(e.message)
            else:
                result = await call_gateway(
                    self._gateway,
                    candidate.transaction_id,
                    amount,
                    request.credit_card.reference if request.credit_card else None,
                    request.merchant_id,
                    timeout=self._config.gateway_timeout,
                    tracer=self._tracer,
                )
                response = result.value if isinstance(result, Ok) else None
                if response is None:
                    response = gateway_error_response(
                        "no response" if isinstance(result, Ok) else result.error
                    )
                candidate.process(response)

            await uow.payments.save(candidate)
            local_events = await stage_events(uow.outbox, self._converter, candidate.drain_events())

        await self._dispatcher.dispatch(local_events)
        logger.info(
            "Payment %s for transaction %s resolved as %s",
            candidate.id,
            candidate.transaction_id,
            candidate.status.value,
            extra={
                "payment_id": candidate.id,
                "transaction_id": candidate.transaction_id,
                "order_id": candidate.order_id,
                "status": candidate.status.value,
            },
        )
        return PaymentOutcome.of(candidate)

    @hooked("refund_payment")
    async def refund_payment(self, payment_id: str, reason: str) -> Payment:
        """
        Refund a successful payment.

        Raises:
            ValidationError: If an argument is blank
            AggregateNotFoundError: If the payment does not exist
            InvalidStateTransitionError: If the payment is not SUCCESS
        """
        payment_id = require_text(payment_id, "payment_id")
        reason = require_text(reason, "reason")
        async with self._uow_factory() as uow:
            payment = await uow.payments.get(payment_id)
            payment.refund(reason)
            await uow.payments.save(payment)
            local_events = await stage_events(uow.outbox, self._converter, payment.drain_events())

        await self._dispatcher.dispatch(local_events)
        return payment

    async def get_payment(self, payment_id: str) -> Payment | None:
        async with self._uow_factory() as uow:
            return await uow.payments.find_by_id(payment_id)

    async def find_by_transaction_id(self, transaction_id: str) -> Payment | None:
        async with self._uow_factory() as uow:
            return await uow.payments.find_by_transaction_id(transaction_id)


__all__ = ["PaymentService", "PaymentOutcome"]
