"""
Message transports.

``InMemoryTransport`` serves tests and single-process setups;
``RabbitMQTransport`` needs the ``rabbitmq`` extra (aio-pika).
"""

from payrelay.transport.interface import (
    CONTENT_TYPE,
    MessageHandler,
    Transport,
    deliver,
    encode,
)
from payrelay.transport.memory import InMemoryTransport, TransportMessage
from payrelay.transport.rabbitmq import (
    RABBITMQ_AVAILABLE,
    RabbitMQNotAvailableError,
    RabbitMQTransport,
    RabbitMQTransportConfig,
)

__all__ = [
    "CONTENT_TYPE",
    "MessageHandler",
    "Transport",
    "deliver",
    "encode",
    "InMemoryTransport",
    "TransportMessage",
    "RABBITMQ_AVAILABLE",
    "RabbitMQNotAvailableError",
    "RabbitMQTransport",
    "RabbitMQTransportConfig",
]
