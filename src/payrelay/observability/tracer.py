"""
Tracer protocol and implementations.

Components receive a :class:`Tracer` through their constructor instead of
talking to OpenTelemetry directly, so tracing can be disabled or replaced
by :class:`MockTracer` in tests.

Example:
    >>> class Publisher:
    ...     def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...
    ...     async def tick(self) -> None:
    ...         with self._tracer.span("payrelay.outbox.publish_batch", {"payrelay.batch.size": 10}):
    ...             ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from payrelay.observability.tracing import get_tracer, should_trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span


class SpanKindEnum(Enum):
    """Role of a span; mapped onto OpenTelemetry's SpanKind when available."""

    INTERNAL = "internal"
    PRODUCER = "producer"
    CONSUMER = "consumer"
    CLIENT = "client"
    SERVER = "server"


@runtime_checkable
class Tracer(Protocol):
    """Protocol for objects that create tracing spans."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Create a span context manager.

        Yields the live span when tracing is active, otherwise None, so
        callers guard attribute updates with ``if span:``.
        """
        ...

    @property
    def enabled(self) -> bool:
        """True when spans are actually recorded."""
        ...

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """Like :meth:`span` but with an explicit span kind (e.g. PRODUCER)."""
        ...


class NullTracer:
    """No-op tracer used when tracing is disabled."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None


class OpenTelemetryTracer:
    """
    Tracer backed by the OpenTelemetry API.

    Args:
        tracer_name: Instrumentation scope name (typically ``__name__``)

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        tracer = get_tracer(tracer_name)
        if tracer is None:
            raise ImportError("opentelemetry is not installed: pip install payrelay[telemetry]")
        self._tracer = tracer

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        from opentelemetry.trace import SpanKind

        otel_kind = {
            SpanKindEnum.INTERNAL: SpanKind.INTERNAL,
            SpanKindEnum.PRODUCER: SpanKind.PRODUCER,
            SpanKindEnum.CONSUMER: SpanKind.CONSUMER,
            SpanKindEnum.CLIENT: SpanKind.CLIENT,
            SpanKindEnum.SERVER: SpanKind.SERVER,
        }[kind]
        return self._tracer.start_as_current_span(
            name,
            kind=otel_kind,
            attributes=attributes or {},
        )


class MockTracer:
    """
    Tracer for tests that records span names and attributes.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("payrelay.outbox.save", {"payrelay.event.type": "X"}):
        ...     pass
        >>> tracer.span_names
        ['payrelay.outbox.save']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Return an OpenTelemetryTracer when tracing is wanted and available,
    otherwise a NullTracer.
    """
    if should_trace(enable_tracing):
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
]
