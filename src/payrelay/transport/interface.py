"""
Transport interface.

A transport moves serialized wire messages to named destinations (queues
or routing keys) and feeds received messages to consumer handlers. It
makes no delivery promise beyond "publish succeeded or raised"; the outbox
and the reconciliation service build at-least-once delivery on top.

Consumer handlers return a :data:`~payrelay.results.Result` that decides
the message's fate: ``Ok`` acknowledges it, ``Retryable`` requeues it and
``Fatal`` dead-letters it.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from payrelay.messages import WireMessage
from payrelay.observability import SpanKindEnum, Tracer, create_tracer
from payrelay.observability.attributes import (
    ATTR_ERROR_TYPE,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_SYSTEM,
    ATTR_RESULT_KIND,
)
from payrelay.results import Ok, Result, Retryable, classify_exception

logger = logging.getLogger(__name__)

MessageHandler = Callable[[bytes, dict[str, Any]], Awaitable[Result[Any]]]

CONTENT_TYPE = "application/json"


def encode(message: WireMessage | bytes) -> bytes:
    return message if isinstance(message, bytes) else message.to_json()


class Transport(ABC):
    """
    Abstract message transport.

    Example:
        >>> transport = InMemoryTransport()
        >>> await transport.subscribe("payment.requests", handler)
        >>> await transport.publish("payment.requests", request, message_id="evt-1")
    """

    @property
    def name(self) -> str:
        """Value of the ``messaging.system`` span attribute."""
        return type(self).__name__.removesuffix("Transport").lower()

    @abstractmethod
    async def publish(
        self,
        destination: str,
        message: WireMessage | bytes,
        *,
        message_id: str | None = None,
        headers: dict[str, Any] | None = None,
    ) -> None:
        """
        Publish one message.

        Raises:
            TransportError: If the message could not be handed to the broker
        """
        ...

    @abstractmethod
    async def subscribe(self, destination: str, handler: MessageHandler) -> None:
        """Register ``handler`` for messages arriving on ``destination``."""
        ...

    async def close(self) -> None:
        """Release connections. The default implementation does nothing."""
        return None


async def deliver(
    transport: Transport,
    destination: str,
    message: WireMessage | bytes,
    *,
    message_id: str | None = None,
    headers: dict[str, Any] | None = None,
    timeout: float = 10.0,
    tracer: Tracer | None = None,
) -> Result[None]:
    """
    Publish with a timeout and report the outcome as a Result.

    A publish that does not finish within ``timeout`` seconds counts as a
    retryable failure; the message may still arrive, which at-least-once
    consumers tolerate. Transient errors are ``Retryable``, anything else
    (serialization bugs, misconfiguration) is ``Fatal``.
    """
    tracer = tracer or create_tracer(__name__, enable_tracing=False)
    attributes = {ATTR_MESSAGING_DESTINATION: destination, ATTR_MESSAGING_SYSTEM: transport.name}
    if message_id:
        attributes[ATTR_MESSAGING_MESSAGE_ID] = message_id
    with tracer.span_with_kind(
        "payrelay.transport.publish", SpanKindEnum.PRODUCER, attributes
    ) as span:
        result: Result[None]
        try:
            await asyncio.wait_for(
                transport.publish(destination, message, message_id=message_id, headers=headers),
                timeout=timeout,
            )
            result = Ok()
        except TimeoutError as e:
            result = Retryable(f"publish to {destination} timed out after {timeout}s", e)
        except Exception as e:
            result = classify_exception(e)

        if span:
            span.set_attribute(ATTR_RESULT_KIND, result.kind)
            if not isinstance(result, Ok) and result.exception is not None:
                span.set_attribute(ATTR_ERROR_TYPE, type(result.exception).__name__)
        if not isinstance(result, Ok):
            logger.warning(
                "Publish to %s failed: %s",
                destination,
                result.error,
                extra={
                    "destination": destination,
                    "message_id": message_id,
                    "result": result.kind,
                },
            )
        return result


__all__ = [
    "Transport",
    "MessageHandler",
    "CONTENT_TYPE",
    "deliver",
    "encode",
]
