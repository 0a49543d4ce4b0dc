"""
Result type returned at the publish, gateway and consumer boundaries.

Callers decide what to do from the result kind alone:

- :class:`Ok` -- the operation succeeded (mark processed, ack).
- :class:`Retryable` -- transient failure; record it and try again later,
  within the configured bound (record failure, nack with requeue).
- :class:`Fatal` -- retrying cannot help; record it, alert, and dead-letter.

Example:
    >>> result = await deliver(transport, "payment.requests", message)
    >>> match result:
    ...     case Ok():
    ...         await outbox.mark_event_as_processed(event_id)
    ...     case Retryable(error=error) | Fatal(error=error):
    ...         await outbox.record_event_failure(event_id, error)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Generic, TypeAlias, TypeVar

from sqlalchemy.exc import OperationalError

from payrelay.exceptions import DuplicateTransactionError, OptimisticLockError, TransportError

T = TypeVar("T")

TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransportError,
    OptimisticLockError,
    DuplicateTransactionError,
    OperationalError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T | None = None

    @property
    def kind(self) -> str:
        return "ok"


@dataclass(frozen=True)
class Retryable:
    error: str
    exception: BaseException | None = field(default=None, compare=False, repr=False)

    @property
    def kind(self) -> str:
        return "retryable"


@dataclass(frozen=True)
class Fatal:
    error: str
    exception: BaseException | None = field(default=None, compare=False, repr=False)

    @property
    def kind(self) -> str:
        return "fatal"


Result: TypeAlias = Ok[T] | Retryable | Fatal


def classify_exception(exc: BaseException) -> Retryable | Fatal:
    """Map an exception onto a failure result; only transient types are retryable."""
    message = str(exc) or type(exc).__name__
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return Retryable(message, exc)
    return Fatal(message, exc)


__all__ = [
    "Ok",
    "Retryable",
    "Fatal",
    "Result",
    "TRANSIENT_EXCEPTIONS",
    "classify_exception",
]
