"""Transactional outbox: event-to-message conversion and the publisher."""

from payrelay.outbox.converter import (
    AggregateLookup,
    MessageConverter,
    UnitOfWorkLookup,
    stage_events,
)
from payrelay.outbox.publisher import OutboxPublisher, PublishBatchResult, PublisherStats

__all__ = [
    "AggregateLookup",
    "MessageConverter",
    "UnitOfWorkLookup",
    "stage_events",
    "OutboxPublisher",
    "PublishBatchResult",
    "PublisherStats",
]
