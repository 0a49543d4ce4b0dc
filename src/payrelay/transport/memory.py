"""
In-memory transport.

Messages are queued per destination and handed to subscribers only when
:meth:`InMemoryTransport.deliver_all` pumps them, so tests control exactly
when a consumer runs. Failures and slow publishes can be injected to
exercise retry paths.
"""

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from payrelay.exceptions import TransportError
from payrelay.messages import WireMessage
from payrelay.results import Fatal, Ok, Retryable, classify_exception
from payrelay.serialization import json_loads
from payrelay.transport.interface import MessageHandler, Transport, encode

logger = logging.getLogger(__name__)


@dataclass
class TransportMessage:
    destination: str
    body: bytes
    message_id: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    redelivered: int = 0

    def json(self) -> Any:
        return json_loads(self.body)


class InMemoryTransport(Transport):
    """
    Process-local transport for tests and single-process setups.

    Example:
        >>> transport = InMemoryTransport()
        >>> await transport.subscribe("payment.requests", handler)
        >>> transport.fail_next(2)
        >>> await transport.publish("payment.requests", request)  # raises TransportError
        >>> await transport.deliver_all()
    """

    def __init__(self, max_redeliveries: int = 10) -> None:
        self._handlers: dict[str, list[MessageHandler]] = defaultdict(list)
        self._queues: dict[str, deque[TransportMessage]] = defaultdict(deque)
        self._max_redeliveries = max_redeliveries
        self._failures_pending = 0
        self._failure_message = "injected failure"
        self._available = True
        self._delay = 0.0
        self.published: list[TransportMessage] = []
        self.dead_letters: list[TransportMessage] = []
        self.publish_attempts = 0

    @property
    def name(self) -> str:
        return "memory"

    def fail_next(self, count: int = 1, message: str = "injected failure") -> None:
        """Make the next ``count`` publishes raise TransportError."""
        self._failures_pending = count
        self._failure_message = message

    def set_available(self, available: bool) -> None:
        """Simulate a broker outage: while unavailable every publish fails."""
        self._available = available

    def set_delay(self, seconds: float) -> None:
        """Make every publish take ``seconds`` (to provoke publish timeouts)."""
        self._delay = seconds

    async def publish(
        self,
        destination: str,
        message: WireMessage | bytes,
        *,
        message_id: str | None = None,
        headers: dict[str, Any] | None = None,
    ) -> None:
        self.publish_attempts += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if not self._available:
            raise TransportError(destination, "transport unavailable")
        if self._failures_pending > 0:
            self._failures_pending -= 1
            raise TransportError(destination, self._failure_message)

        envelope = TransportMessage(
            destination=destination,
            body=encode(message),
            message_id=message_id,
            headers=dict(headers or {}),
        )
        self.published.append(envelope)
        self._queues[destination].append(envelope)
        logger.debug(
            "Queued message for %s",
            destination,
            extra={"destination": destination, "message_id": message_id},
        )

    async def subscribe(self, destination: str, handler: MessageHandler) -> None:
        self._handlers[destination].append(handler)

    def messages_for(self, destination: str) -> list[TransportMessage]:
        """Every message ever published to ``destination``, in order."""
        return [message for message in self.published if message.destination == destination]

    def pending(self, destination: str | None = None) -> int:
        if destination is not None:
            return len(self._queues[destination])
        return sum(len(queue) for queue in self._queues.values())

    async def deliver_all(self) -> int:
        """
        Hand queued messages to subscribers until every queue with a
        subscriber is empty.

        ``Ok`` consumes a message, ``Retryable`` puts it back at the end of
        its queue (at most ``max_redeliveries`` times before it is
        dead-lettered), ``Fatal`` dead-letters it. Messages published by
        handlers during the pump are delivered too.

        Returns:
            Number of handler invocations
        """
        invocations = 0
        while True:
            ready = [name for name, queue in self._queues.items() if queue and self._handlers[name]]
            if not ready:
                return invocations
            for destination in ready:
                message = self._queues[destination].popleft()
                for handler in list(self._handlers[destination]):
                    invocations += 1
                    self._settle(message, await self._invoke(handler, message))

    async def _invoke(self, handler: MessageHandler, message: TransportMessage) -> Any:
        try:
            return await handler(message.body, dict(message.headers))
        except Exception as e:
            logger.warning(
                "Handler for %s raised: %s",
                message.destination,
                e,
                exc_info=True,
                extra={"destination": message.destination, "message_id": message.message_id},
            )
            return classify_exception(e)

    def _settle(self, message: TransportMessage, result: Any) -> None:
        match result:
            case Ok():
                return
            case Retryable() if message.redelivered < self._max_redeliveries:
                message.redelivered += 1
                self._queues[message.destination].append(message)
            case Retryable() | Fatal():
                logger.warning(
                    "Dead-lettered message on %s: %s",
                    message.destination,
                    result.error,
                    extra={"destination": message.destination, "message_id": message.message_id},
                )
                self.dead_letters.append(message)
            case _:
                raise TypeError(f"handler returned {result!r}, expected a Result")

    async def close(self) -> None:
        self._queues.clear()


__all__ = ["InMemoryTransport", "TransportMessage"]
