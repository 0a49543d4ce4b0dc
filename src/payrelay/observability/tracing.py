"""
OpenTelemetry availability detection.

OpenTelemetry is an optional dependency (``pip install payrelay[telemetry]``).
Everything else in :mod:`payrelay.observability` consults ``OTEL_AVAILABLE``
instead of importing opentelemetry directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer as OtelTracer

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


def get_tracer(name: str) -> OtelTracer | None:
    """Return an OpenTelemetry tracer, or None when OpenTelemetry is not installed."""
    if OTEL_AVAILABLE and trace is not None:
        return trace.get_tracer(name)
    return None


def should_trace(enable_tracing: bool) -> bool:
    """True when the component wants tracing and OpenTelemetry is importable."""
    return enable_tracing and OTEL_AVAILABLE


__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "should_trace",
]
