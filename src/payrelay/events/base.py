"""
Base class for domain events.

Events are immutable facts recorded by an aggregate while it executes a
command. They are buffered on the aggregate, drained once per command, and
either written to the outbox or handed to the local dispatcher.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, ClassVar, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    """
    Base class for all domain events with automatic event_type derivation.

    The ``event_type`` field defaults to the subclass name, so variants only
    declare their payload fields and, where it is fixed, ``aggregate_type``.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Type name of the event (auto-derived from class name)
        event_version: Schema version of the event payload
        occurred_on: When the event occurred (UTC)
        aggregate_id: Identifier of the aggregate that recorded the event
        aggregate_type: Type of that aggregate ('Order', 'Payment')
        correlation_id: Identifier linking events of one business flow
        metadata: Free-form metadata (trace ids, actor, ...)

    Example:
        >>> class PaymentRequestedEvent(DomainEvent):
        ...     aggregate_type: str = "Order"
        ...     order_id: str
        ...     transaction_id: str
        ...
        >>> event = PaymentRequestedEvent(aggregate_id="o-1", order_id="o-1", transaction_id="TXN-1")
        >>> event.event_type
        'PaymentRequestedEvent'
    """

    model_config = ConfigDict(frozen=True)

    suppress_event_type_warning: ClassVar[bool] = False

    event_id: UUID = Field(default_factory=uuid4)
    event_type: str = Field(default="")
    event_version: int = Field(default=1, ge=1)
    occurred_on: datetime = Field(default_factory=lambda: datetime.now(UTC))

    aggregate_id: str = Field(..., min_length=1)
    aggregate_type: str = Field(..., min_length=1)

    correlation_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        explicit_type = cls.__dict__.get("event_type")
        if (
            isinstance(explicit_type, str)
            and explicit_type
            and explicit_type != cls.__name__
            and not cls.suppress_event_type_warning
        ):
            logger.warning(
                "Event class %s has event_type='%s' which differs from class name",
                cls.__name__,
                explicit_type,
            )

    @model_validator(mode="before")
    @classmethod
    def _ensure_event_type(cls, data: Any) -> Any:
        """Fill event_type from the class name unless a subclass pins its own default."""
        if isinstance(data, dict) and not data.get("event_type"):
            field_info = cls.model_fields.get("event_type")
            default = field_info.default if field_info else ""
            pinned = default if isinstance(default, str) and default else None
            data = {**data, "event_type": pinned or cls.__name__}
        return data

    def __str__(self) -> str:
        return f"{self.event_type}(event_id={self.event_id}, aggregate_id={self.aggregate_id})"

    def with_correlation(self, correlation_id: UUID) -> Self:
        """Return a copy of this event carrying the given correlation id."""
        return self.model_copy(update={"correlation_id": correlation_id})

    def with_metadata(self, **kwargs: Any) -> Self:
        """Return a copy of this event with extra metadata merged in."""
        return self.model_copy(update={"metadata": {**self.metadata, **kwargs}})

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible dict of every field (UUIDs, datetimes and Decimals as strings)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Validate a dict produced by :meth:`to_dict` back into an event."""
        return cls.model_validate(data)
