"""
Event type registry used to rehydrate outbox payloads.

An outbox row stores the event type name next to the serialized payload;
the publisher looks the name up here to validate the payload back into the
right :class:`DomainEvent` subclass.

Usage:
    @register_event
    class PaymentRequestedEvent(DomainEvent):
        ...

    event_class = default_registry.get("PaymentRequestedEvent")
    event = event_class.model_validate_json(row.payload)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar, overload

if TYPE_CHECKING:
    from payrelay.events.base import DomainEvent

logger = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound="DomainEvent")


class EventTypeNotFoundError(KeyError):
    """Raised when an event type name has no registered class."""

    def __init__(self, event_type: str, available_types: list[str]) -> None:
        self.event_type = event_type
        self.available_types = available_types
        available = ", ".join(sorted(available_types)) if available_types else "none"
        super().__init__(f"Unknown event type: '{event_type}'. Available types: {available}")


class DuplicateEventTypeError(ValueError):
    """Raised when a different class is registered under an existing name."""

    def __init__(
        self,
        event_type: str,
        existing_class: type[DomainEvent],
        new_class: type[DomainEvent],
    ) -> None:
        self.event_type = event_type
        self.existing_class = existing_class
        self.new_class = new_class
        super().__init__(
            f"Event type '{event_type}' is already registered to {existing_class.__name__}; "
            f"cannot register {new_class.__name__}"
        )


class EventRegistry:
    """
    Thread-safe mapping of event type names to event classes.

    A module-level :data:`default_registry` holds the built-in payment
    events; tests may build isolated registries.
    """

    def __init__(self) -> None:
        self._registry: dict[str, type[DomainEvent]] = {}
        self._lock = threading.RLock()

    def register(
        self,
        event_class: type[TEvent],
        event_type: str | None = None,
    ) -> type[TEvent]:
        """
        Register ``event_class`` under ``event_type`` (or its resolved name).

        Re-registering the same class is a no-op.

        Raises:
            DuplicateEventTypeError: If the name belongs to another class
        """
        resolved_type = event_type or self._resolve_event_type(event_class)

        with self._lock:
            existing = self._registry.get(resolved_type)
            if existing is not None:
                if existing is not event_class:
                    raise DuplicateEventTypeError(resolved_type, existing, event_class)
                return event_class

            self._registry[resolved_type] = event_class
            logger.debug(
                "Registered event type '%s' -> %s",
                resolved_type,
                event_class.__name__,
                extra={"event_type": resolved_type, "event_class": event_class.__name__},
            )
            return event_class

    @staticmethod
    def _resolve_event_type(event_class: type[DomainEvent]) -> str:
        field_info = event_class.model_fields.get("event_type")
        if field_info and isinstance(field_info.default, str) and field_info.default:
            return field_info.default
        return event_class.__name__

    def get(self, event_type: str) -> type[DomainEvent]:
        """
        Look up an event class by name.

        Raises:
            EventTypeNotFoundError: If the name is not registered
        """
        with self._lock:
            if event_type not in self._registry:
                raise EventTypeNotFoundError(event_type, list(self._registry))
            return self._registry[event_type]

    def get_or_none(self, event_type: str) -> type[DomainEvent] | None:
        with self._lock:
            return self._registry.get(event_type)

    def list_types(self) -> list[str]:
        with self._lock:
            return sorted(self._registry)

    def __contains__(self, event_type: str) -> bool:
        with self._lock:
            return event_type in self._registry

    def __len__(self) -> int:
        with self._lock:
            return len(self._registry)


default_registry = EventRegistry()


@overload
def register_event(event_class: type[TEvent]) -> type[TEvent]: ...


@overload
def register_event(
    event_class: None = None,
    *,
    event_type: str | None = None,
    registry: EventRegistry | None = None,
) -> Callable[[type[TEvent]], type[TEvent]]: ...


def register_event(
    event_class: type[TEvent] | None = None,
    *,
    event_type: str | None = None,
    registry: EventRegistry | None = None,
) -> type[TEvent] | Callable[[type[TEvent]], type[TEvent]]:
    """
    Class decorator registering an event, with or without arguments.

        @register_event
        class PaymentFailedEvent(DomainEvent): ...

        @register_event(registry=test_registry)
        class SampleEvent(DomainEvent): ...
    """
    target_registry = registry or default_registry

    def decorator(cls: type[TEvent]) -> type[TEvent]:
        return target_registry.register(cls, event_type)

    if event_class is not None:
        return decorator(event_class)
    return decorator


__all__ = [
    "EventRegistry",
    "EventTypeNotFoundError",
    "DuplicateEventTypeError",
    "default_registry",
    "register_event",
]
