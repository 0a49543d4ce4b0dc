"""
Idempotency guard keyed on transaction id.

The payment table's unique constraint on ``transaction_id`` is the
coordination point between concurrent consumers: whoever inserts first owns
the transaction, everybody else reads the owner's payment. The lookup
before the insert only saves the failed insert in the common sequential
case.
"""

import logging

from payrelay.aggregates.payment import Payment
from payrelay.exceptions import DuplicateTransactionError
from payrelay.repositories.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """
    Claims transaction ids for new payments.

    Example:
        >>> async with uow_factory() as uow:
        ...     existing = await guard.claim(uow, Payment.create(tx, order_id, customer_id, amount))
        ...     if existing is not None:
        ...         return outcome_of(existing)
    """

    async def claim(self, uow: UnitOfWork, payment: Payment) -> Payment | None:
        """
        Insert ``payment`` unless its transaction id is already taken.

        Returns:
            None when ``payment`` now owns the transaction id, otherwise the
            payment that owns it

        Raises:
            DuplicateTransactionError: If the insert lost a race and the
                winning payment is still not visible
        """
        existing = await uow.payments.find_by_transaction_id(payment.transaction_id)
        if existing is not None:
            logger.info(
                "Duplicate payment request for transaction %s",
                payment.transaction_id,
                extra={
                    "transaction_id": payment.transaction_id,
                    "payment_id": existing.id,
                    "status": existing.status.value,
                },
            )
            return existing

        try:
            async with uow.savepoint():
                await uow.payments.save(payment)
        except DuplicateTransactionError:
            winner = await uow.payments.find_by_transaction_id(payment.transaction_id)
            if winner is None:
                raise
            logger.info(
                "Lost claim for transaction %s to payment %s",
                payment.transaction_id,
                winner.id,
                extra={"transaction_id": payment.transaction_id, "payment_id": winner.id},
            )
            return winner

        logger.debug(
            "Claimed transaction %s",
            payment.transaction_id,
            extra={"transaction_id": payment.transaction_id, "payment_id": payment.id},
        )
        return None


__all__ = ["IdempotencyGuard"]
