"""
Base class for state-stored aggregates.

An aggregate validates a transition, updates its own fields and records the
resulting domain event in a plain ordered buffer. It never persists or
sends anything itself: the application service saves the aggregate and
drains the buffer inside one unit of work.
"""

import logging
from abc import ABC
from datetime import UTC, datetime
from typing import ClassVar

from payrelay.events.base import DomainEvent
from payrelay.exceptions import InvalidStateTransitionError, ValidationError

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def require_text(value: str | None, field: str) -> str:
    """Return ``value`` stripped, raising ValidationError when it is None or blank."""
    if value is None or not str(value).strip():
        raise ValidationError("must not be blank", field=field)
    return str(value).strip()


class AggregateRoot(ABC):
    """
    Base class for Order and Payment.

    Subclasses set ``aggregate_type`` and call :meth:`_record` exactly once
    per successful transition.

    Attributes:
        version: Number of times the aggregate has been saved. 0 means it
            has never been persisted; repositories use it for optimistic
            concurrency checks.
    """

    aggregate_type: ClassVar[str] = "Aggregate"

    def __init__(self, aggregate_id: str, version: int = 0) -> None:
        self._id = aggregate_id
        self._version = version
        self._pending_events: list[DomainEvent] = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def version(self) -> int:
        return self._version

    @property
    def pending_events(self) -> list[DomainEvent]:
        """Copy of the events recorded since the last drain."""
        return list(self._pending_events)

    @property
    def has_pending_events(self) -> bool:
        return bool(self._pending_events)

    def _record(self, event: DomainEvent) -> None:
        self._pending_events.append(event)
        logger.debug(
            "Recorded %s on %s %s",
            event.event_type,
            self.aggregate_type,
            self._id,
            extra={"event_id": str(event.event_id), "aggregate_id": self._id},
        )

    def drain_events(self) -> list[DomainEvent]:
        """Return the recorded events in order and empty the buffer."""
        events, self._pending_events = self._pending_events, []
        return events

    def mark_saved(self) -> None:
        """Called by repositories after a successful write."""
        self._version += 1

    def _reject(self, action: str, status: str) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(self.aggregate_type, self._id, action, status)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id!r}, version={self._version})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AggregateRoot):
            return NotImplemented
        return type(self) is type(other) and self._id == other._id

    def __hash__(self) -> int:
        return hash((type(self), self._id))
