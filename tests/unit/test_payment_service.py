"""
Unit tests for PaymentService.

Tests cover:
- Approved and declined gateway responses
- Gateway timeouts and errors recorded as failed payments
- Business limit violations stored as failed payments
- Confirmation events staged in the outbox
- Refunds and command hooks
"""

import pytest

from payrelay.aggregates.payment import PaymentStatus
from payrelay.events.payment import (
    PaymentFailedEvent,
    PaymentProcessedEvent,
    PaymentRefundedEvent,
)
from payrelay.exceptions import (
    AggregateNotFoundError,
    InvalidStateTransitionError,
    ValidationError,
)
from payrelay.hooks import RecordingCommandHook
from payrelay.payments.gateway import GATEWAY_ERROR_PREFIX
from payrelay.payments.service import PaymentService
from payrelay.repositories import InMemoryDatabase, UnitOfWorkFactory
from tests.fixtures import FakeGateway, payment_request


class TestProcessPaymentRequest:
    @pytest.mark.asyncio
    async def test_approved(
        self, payment_service: PaymentService, gateway: FakeGateway
    ) -> None:
        outcome = await payment_service.process_payment_request(payment_request())

        assert outcome.status is PaymentStatus.SUCCESS
        assert outcome.is_success
        assert not outcome.duplicate
        assert outcome.gateway_response == "SUCCESS"
        [call] = gateway.calls
        assert call.transaction_id == "TXN-1"
        assert call.credit_card_ref == "VISA-1111"
        assert call.merchant_id == "MERCHANT_001"

    @pytest.mark.asyncio
    async def test_declined(self, payment_service: PaymentService, gateway: FakeGateway) -> None:
        gateway.respond_with("DECLINED: insufficient funds")

        outcome = await payment_service.process_payment_request(payment_request())

        assert outcome.status is PaymentStatus.FAILED
        assert outcome.failure_reason == "Payment processing failed: DECLINED: insufficient funds"

    @pytest.mark.asyncio
    async def test_gateway_exception_fails_payment(
        self, payment_service: PaymentService, gateway: FakeGateway
    ) -> None:
        gateway.respond_with(ConnectionError("gateway unreachable"))

        outcome = await payment_service.process_payment_request(payment_request())

        assert outcome.status is PaymentStatus.FAILED
        assert outcome.gateway_response is not None
        assert outcome.gateway_response.startswith(f"{GATEWAY_ERROR_PREFIX}: ")
        assert "gateway unreachable" in outcome.gateway_response

    @pytest.mark.asyncio
    async def test_gateway_timeout_fails_payment(
        self, payment_service: PaymentService, gateway: FakeGateway
    ) -> None:
        gateway.delay = 5.0

        outcome = await payment_service.process_payment_request(payment_request())

        assert outcome.status is PaymentStatus.FAILED
        assert outcome.gateway_response is not None
        assert "timed out" in outcome.gateway_response

    @pytest.mark.asyncio
    async def test_confirmation_staged_in_outbox(
        self, payment_service: PaymentService, uow_factory: UnitOfWorkFactory
    ) -> None:
        outcome = await payment_service.process_payment_request(payment_request())

        async with uow_factory() as uow:
            [row] = await uow.outbox.get_unprocessed_events()
        assert row.event_type == PaymentProcessedEvent.__name__
        assert row.aggregate_type == "Payment"
        assert row.aggregate_id == outcome.payment_id

    @pytest.mark.asyncio
    async def test_payment_persisted(self, payment_service: PaymentService) -> None:
        outcome = await payment_service.process_payment_request(payment_request())

        payment = await payment_service.find_by_transaction_id("TXN-1")
        assert payment is not None
        assert payment.id == outcome.payment_id
        assert payment.status is PaymentStatus.SUCCESS
        assert await payment_service.get_payment(outcome.payment_id) is not None


class TestValidation:
    @pytest.mark.asyncio
    async def test_amount_over_limit_fails_payment(
        self, payment_service: PaymentService, gateway: FakeGateway, uow_factory: UnitOfWorkFactory
    ) -> None:
        outcome = await payment_service.process_payment_request(
            payment_request(amount="10000.01")
        )

        assert outcome.status is PaymentStatus.FAILED
        assert outcome.failure_reason is not None
        assert outcome.failure_reason.startswith("Payment validation failed: ")
        assert "exceeds maximum" in outcome.failure_reason
        assert gateway.calls == []
        async with uow_factory() as uow:
            [row] = await uow.outbox.get_unprocessed_events()
        assert row.event_type == PaymentFailedEvent.__name__

    @pytest.mark.asyncio
    async def test_unsupported_currency_fails_payment(
        self, payment_service: PaymentService, gateway: FakeGateway
    ) -> None:
        outcome = await payment_service.process_payment_request(payment_request(currency="JPY"))

        assert outcome.status is PaymentStatus.FAILED
        assert outcome.failure_reason is not None
        assert "currency JPY is not supported" in outcome.failure_reason
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_rejected_request_is_idempotent(
        self, payment_service: PaymentService, database: InMemoryDatabase
    ) -> None:
        request = payment_request(currency="GBP")

        first = await payment_service.process_payment_request(request)
        second = await payment_service.process_payment_request(request)

        assert second == first
        assert second.duplicate
        assert database.count("payments") == 1
        assert database.count("outbox_events") == 1

    def test_validate_raises(self, payment_service: PaymentService) -> None:
        with pytest.raises(ValidationError) as exc_info:
            payment_service.validate(payment_request(amount="10000.01"))

        assert exc_info.value.field == "amount"

    @pytest.mark.asyncio
    async def test_limit_is_inclusive(self, payment_service: PaymentService) -> None:
        outcome = await payment_service.process_payment_request(
            payment_request(amount="10000.00")
        )

        assert outcome.is_success


class TestRefund:
    @pytest.mark.asyncio
    async def test_refund_successful_payment(
        self, payment_service: PaymentService, uow_factory: UnitOfWorkFactory
    ) -> None:
        outcome = await payment_service.process_payment_request(payment_request())

        payment = await payment_service.refund_payment(outcome.payment_id, "customer request")

        assert payment.status is PaymentStatus.REFUNDED
        assert payment.refunded_at is not None
        stored = await payment_service.get_payment(outcome.payment_id)
        assert stored is not None
        assert stored.status is PaymentStatus.REFUNDED
        async with uow_factory() as uow:
            rows = await uow.outbox.get_unprocessed_events()
        assert PaymentRefundedEvent.__name__ in {row.event_type for row in rows}

    @pytest.mark.asyncio
    async def test_refund_failed_payment_rejected(
        self, payment_service: PaymentService, gateway: FakeGateway
    ) -> None:
        gateway.respond_with("DECLINED")
        outcome = await payment_service.process_payment_request(payment_request())

        with pytest.raises(InvalidStateTransitionError):
            await payment_service.refund_payment(outcome.payment_id, "customer request")

    @pytest.mark.asyncio
    async def test_refund_unknown_payment(self, payment_service: PaymentService) -> None:
        with pytest.raises(AggregateNotFoundError):
            await payment_service.refund_payment("missing", "customer request")

    @pytest.mark.asyncio
    async def test_refund_requires_reason(self, payment_service: PaymentService) -> None:
        outcome = await payment_service.process_payment_request(payment_request())

        with pytest.raises(ValidationError):
            await payment_service.refund_payment(outcome.payment_id, " ")


class TestHooks:
    @pytest.mark.asyncio
    async def test_success_notifies_hooks(
        self, payment_service: PaymentService, hooks: RecordingCommandHook
    ) -> None:
        outcome = await payment_service.process_payment_request(payment_request())

        assert [(kind, command) for kind, command, _ in hooks.calls] == [
            ("start", "process_payment"),
            ("success", "process_payment"),
        ]
        assert hooks.calls[1][2] == outcome

    @pytest.mark.asyncio
    async def test_failure_notifies_hooks(
        self, payment_service: PaymentService, hooks: RecordingCommandHook
    ) -> None:
        with pytest.raises(AggregateNotFoundError):
            await payment_service.refund_payment("missing", "customer request")

        kind, command, context = hooks.calls[0]
        assert (kind, command) == ("start", "refund_payment")
        assert context == {"payment_id": "missing", "reason": "customer request"}
        assert hooks.calls[1][0] == "failure"
        assert isinstance(hooks.calls[1][2], AggregateNotFoundError)
