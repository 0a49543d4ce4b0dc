"""
Configuration for payrelay components.

All settings are frozen dataclasses validated in ``__post_init__``; invalid
values raise ValueError when the configuration is built, not when a
periodic task first uses it.

Example:
    >>> config = RelayConfig(
    ...     outbox=OutboxConfig(poll_interval=2.0, batch_size=200),
    ...     reconciliation=ReconciliationConfig(confirmation_timeout=600.0),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class OutboxConfig:
    """
    Outbox publisher settings.

    Attributes:
        poll_interval: Seconds between publisher ticks
        batch_size: Maximum rows claimed per tick (1..1000)
        max_retries: Publish attempts before a row counts as failed
        retention_hours: Age after which processed rows are deleted
        failed_retention_hours: Age after which exhausted rows are deleted
        publish_timeout: Seconds a single publish may take before it is
            treated as a failure
        cleanup_interval: Seconds between cleanup runs
        statistics_interval: Seconds between statistics log lines
        unprocessed_alert_threshold: Unprocessed row count that triggers a warning
        failed_alert_threshold: Failed row count that triggers a warning
    """

    poll_interval: float = 5.0
    batch_size: int = 100
    max_retries: int = 5
    retention_hours: int = 24
    failed_retention_hours: int = 72
    publish_timeout: float = 10.0
    cleanup_interval: float = 3600.0
    statistics_interval: float = 600.0
    unprocessed_alert_threshold: int = 1000
    failed_alert_threshold: int = 100

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if not 1 <= self.batch_size <= 1000:
            raise ValueError(f"batch_size must be between 1 and 1000, got {self.batch_size}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be positive, got {self.max_retries}")
        if self.retention_hours < 1 or self.failed_retention_hours < 1:
            raise ValueError("retention hours must be positive")
        if self.publish_timeout <= 0:
            raise ValueError(f"publish_timeout must be positive, got {self.publish_timeout}")
        if self.cleanup_interval <= 0 or self.statistics_interval <= 0:
            raise ValueError("cleanup_interval and statistics_interval must be positive")


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Requester-side retry settings.

    A request is re-issued once ``confirmation_timeout`` plus
    ``base_retry_delay * 2**retry_count`` seconds have passed since it was
    last sent, at most ``max_retry_attempts`` times.
    """

    max_retry_attempts: int = 5
    base_retry_delay: float = 1.0
    confirmation_timeout: float = 1800.0
    interval: float = 60.0
    batch_size: int = 50

    def __post_init__(self) -> None:
        if self.max_retry_attempts < 1:
            raise ValueError(
                f"max_retry_attempts must be positive, got {self.max_retry_attempts}"
            )
        if self.base_retry_delay <= 0:
            raise ValueError(f"base_retry_delay must be positive, got {self.base_retry_delay}")
        if self.confirmation_timeout < 0:
            raise ValueError("confirmation_timeout must be non-negative")
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        if not 1 <= self.batch_size <= 1000:
            raise ValueError(f"batch_size must be between 1 and 1000, got {self.batch_size}")


@dataclass(frozen=True)
class MessagingConfig:
    payment_request_destination: str = "payment.requests"
    payment_confirmation_destination: str = "payment.confirmations"
    merchant_id: str = "MERCHANT_001"

    def __post_init__(self) -> None:
        if not self.payment_request_destination or not self.payment_confirmation_destination:
            raise ValueError("destinations must not be empty")
        if self.payment_request_destination == self.payment_confirmation_destination:
            raise ValueError("request and confirmation destinations must differ")
        if not self.merchant_id:
            raise ValueError("merchant_id must not be empty")


@dataclass(frozen=True)
class PaymentConfig:
    """Responder-side business limits and gateway timeout."""

    max_amount: Decimal = Decimal("10000.00")
    supported_currencies: frozenset[str] = frozenset({"USD", "TWD", "EUR"})
    gateway_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.max_amount <= 0:
            raise ValueError(f"max_amount must be positive, got {self.max_amount}")
        if not self.supported_currencies:
            raise ValueError("supported_currencies must not be empty")
        if self.gateway_timeout <= 0:
            raise ValueError(f"gateway_timeout must be positive, got {self.gateway_timeout}")


@dataclass(frozen=True)
class RelayConfig:
    outbox: OutboxConfig = field(default_factory=OutboxConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    payments: PaymentConfig = field(default_factory=PaymentConfig)
    enable_tracing: bool = True


__all__ = [
    "OutboxConfig",
    "ReconciliationConfig",
    "MessagingConfig",
    "PaymentConfig",
    "RelayConfig",
]
