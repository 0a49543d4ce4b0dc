"""
payrelay - Reliable payment event delivery between an order service and a
payment service.

This library provides:
- Order and Payment aggregates with guarded state transitions
- Transactional outbox with an at-least-once publisher
- Requester-side reconciliation with exponential backoff
- Idempotent payment processing keyed on transaction id
- In-memory and RabbitMQ transports
- In-memory and SQLAlchemy (PostgreSQL, SQLite) persistence
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("payrelay")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Aggregates
from payrelay.aggregates import (
    BillingAddress,
    CardDetails,
    CreditCard,
    Money,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
)

# Composition
from payrelay.app import OrderSideRuntime, PaymentSideRuntime

# Configuration
from payrelay.config import (
    MessagingConfig,
    OutboxConfig,
    PaymentConfig,
    ReconciliationConfig,
    RelayConfig,
)

# Events
from payrelay.events import (
    DomainEvent,
    LocalEventDispatcher,
    OrderCancelledEvent,
    PaymentConfirmedEvent,
    PaymentFailedEvent,
    PaymentProcessedEvent,
    PaymentRefundedEvent,
    PaymentRequestedEvent,
    default_registry,
)

# Exceptions
from payrelay.exceptions import (
    AggregateNotFoundError,
    DuplicateTransactionError,
    InvalidStateTransitionError,
    NotFoundError,
    OptimisticLockError,
    OutboxEventNotFoundError,
    PayRelayError,
    RoutingError,
    SerializationError,
    TransactionMismatchError,
    TransportError,
    ValidationError,
)
from payrelay.hooks import CommandHook, LoggingCommandHook, RecordingCommandHook

# Wire messages
from payrelay.messages import (
    ConfirmationStatus,
    PaymentConfirmation,
    PaymentRequest,
    WireMessage,
)

# Services
from payrelay.orders import OrderService, PaymentConfirmationHandler
from payrelay.outbox import MessageConverter, OutboxPublisher
from payrelay.payments import IdempotencyGuard, PaymentGateway, PaymentOutcome, PaymentService
from payrelay.reconciliation import (
    ReconcileOutcome,
    ReconciliationReport,
    ReconciliationService,
    calculate_backoff,
)

# Persistence
from payrelay.repositories import (
    InMemoryDatabase,
    UnitOfWork,
    UnitOfWorkFactory,
    create_relay_engine,
    create_schema,
    in_memory_unit_of_work_factory,
    sqlalchemy_unit_of_work_factory,
)
from payrelay.results import Fatal, Ok, Result, Retryable
from payrelay.scheduling import PeriodicTask, TaskRunner

# Transports
from payrelay.transport import (
    RABBITMQ_AVAILABLE,
    InMemoryTransport,
    RabbitMQTransport,
    RabbitMQTransportConfig,
    Transport,
)

__all__ = [
    "__version__",
    # Aggregates
    "BillingAddress",
    "CardDetails",
    "CreditCard",
    "Money",
    "Order",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    # Composition
    "OrderSideRuntime",
    "PaymentSideRuntime",
    # Configuration
    "MessagingConfig",
    "OutboxConfig",
    "PaymentConfig",
    "ReconciliationConfig",
    "RelayConfig",
    # Events
    "DomainEvent",
    "LocalEventDispatcher",
    "OrderCancelledEvent",
    "PaymentConfirmedEvent",
    "PaymentFailedEvent",
    "PaymentProcessedEvent",
    "PaymentRefundedEvent",
    "PaymentRequestedEvent",
    "default_registry",
    # Exceptions
    "PayRelayError",
    "ValidationError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "OutboxEventNotFoundError",
    "AggregateNotFoundError",
    "OptimisticLockError",
    "DuplicateTransactionError",
    "TransactionMismatchError",
    "TransportError",
    "SerializationError",
    "RoutingError",
    # Hooks
    "CommandHook",
    "LoggingCommandHook",
    "RecordingCommandHook",
    # Wire messages
    "WireMessage",
    "PaymentRequest",
    "PaymentConfirmation",
    "ConfirmationStatus",
    # Services
    "OrderService",
    "PaymentConfirmationHandler",
    "MessageConverter",
    "OutboxPublisher",
    "IdempotencyGuard",
    "PaymentGateway",
    "PaymentOutcome",
    "PaymentService",
    "ReconcileOutcome",
    "ReconciliationReport",
    "ReconciliationService",
    "calculate_backoff",
    # Persistence
    "InMemoryDatabase",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "create_relay_engine",
    "create_schema",
    "in_memory_unit_of_work_factory",
    "sqlalchemy_unit_of_work_factory",
    # Results
    "Ok",
    "Retryable",
    "Fatal",
    "Result",
    # Scheduling
    "PeriodicTask",
    "TaskRunner",
    # Transports
    "Transport",
    "InMemoryTransport",
    "RabbitMQTransport",
    "RabbitMQTransportConfig",
    "RABBITMQ_AVAILABLE",
]
