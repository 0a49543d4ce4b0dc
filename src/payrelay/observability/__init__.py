"""
Observability utilities for payrelay.

Tracing is optional: without OpenTelemetry installed every component falls
back to :class:`NullTracer` and behaves identically.

Example:
    >>> from payrelay.observability import OTEL_AVAILABLE, create_tracer
    >>> tracer = create_tracer(__name__, enable_tracing=OTEL_AVAILABLE)
"""

from payrelay.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from payrelay.observability.tracing import OTEL_AVAILABLE, get_tracer, should_trace

__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "should_trace",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
]
