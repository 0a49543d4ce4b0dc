"""Library exceptions for the payrelay package."""

from uuid import UUID


class PayRelayError(Exception):
    """Base exception for payrelay."""

    pass


class ValidationError(PayRelayError):
    """Raised when command input or a value object fails validation."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        self.message = message
        prefix = f"{field}: " if field else ""
        super().__init__(f"{prefix}{message}")


class InvalidStateTransitionError(PayRelayError):
    """
    Raised when an aggregate is asked to perform a transition its
    current status does not allow.

    This is a programming error from the caller's perspective. It is never
    retried and never swallowed.

    Attributes:
        aggregate_type: Type of aggregate ('Order' or 'Payment')
        aggregate_id: Identifier of the aggregate
        action: Name of the attempted transition
        current_status: Status the aggregate was in
    """

    def __init__(
        self,
        aggregate_type: str,
        aggregate_id: str,
        action: str,
        current_status: str,
    ) -> None:
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.action = action
        self.current_status = current_status
        super().__init__(
            f"Cannot {action} {aggregate_type} {aggregate_id} in status {current_status}"
        )


class NotFoundError(PayRelayError):
    """Raised when a stored record cannot be found."""

    def __init__(self, entity: str, identifier: object) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class OutboxEventNotFoundError(NotFoundError):
    """Raised when an outbox row is missing (e.g. already cleaned up)."""

    def __init__(self, event_id: UUID) -> None:
        self.event_id = event_id
        super().__init__("Outbox event", event_id)


class AggregateNotFoundError(NotFoundError):
    """Raised when an aggregate cannot be found."""

    def __init__(self, aggregate_id: str, aggregate_type: str | None = None) -> None:
        self.aggregate_id = aggregate_id
        self.aggregate_type = aggregate_type
        super().__init__(aggregate_type or "Aggregate", aggregate_id)


class OptimisticLockError(PayRelayError):
    """Raised when an aggregate was modified by someone else since it was loaded."""

    def __init__(self, aggregate_type: str, aggregate_id: str, expected_version: int) -> None:
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        super().__init__(
            f"Optimistic lock error for {aggregate_type} {aggregate_id}: "
            f"expected version {expected_version} is stale"
        )


class DuplicateTransactionError(PayRelayError):
    """Raised when a second payment is inserted for an existing transaction id."""

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Payment already exists for transaction {transaction_id}")


class TransactionMismatchError(PayRelayError):
    """
    Raised when a payment confirmation refers to a transaction id that is
    not the order's current one.

    Attributes:
        order_id: Order the confirmation was addressed to
        expected: The order's current transaction id
        actual: Transaction id carried by the confirmation
    """

    def __init__(self, order_id: str, expected: str | None, actual: str) -> None:
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Transaction id mismatch for order {order_id}: expected {expected}, got {actual}"
        )


class TransportError(PayRelayError):
    """Raised by a transport adapter when a message could not be published."""

    def __init__(self, destination: str, message: str) -> None:
        self.destination = destination
        super().__init__(f"Failed to publish to {destination}: {message}")


class SerializationError(PayRelayError):
    """Raised when event serialization or deserialization fails."""

    def __init__(self, event_type: str, message: str) -> None:
        self.event_type = event_type
        super().__init__(f"Serialization error for {event_type}: {message}")


class RoutingError(PayRelayError):
    """Raised when no destination is configured for an event."""

    def __init__(self, event_type: str, aggregate_type: str) -> None:
        self.event_type = event_type
        self.aggregate_type = aggregate_type
        super().__init__(f"No message route for {aggregate_type}/{event_type}")
