"""
Outbox publisher.

Each tick claims a batch of unprocessed outbox rows inside one unit of
work, converts every row back into its wire message and hands it to the
transport. A row is marked processed only after the transport accepted the
message; any other outcome records a failure so the row is retried on a
later tick until ``max_retries`` is reached. A crash between publish and
commit therefore produces a duplicate message, never a lost one.

Every row is settled inside its own savepoint, so one bad row never aborts
the rest of the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

import pydantic

from payrelay.config import MessagingConfig, OutboxConfig
from payrelay.events.registry import EventRegistry, default_registry
from payrelay.exceptions import SerializationError
from payrelay.messages import WireMessage
from payrelay.observability import Tracer, create_tracer
from payrelay.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_MAX_RETRIES,
    ATTR_RESULT_KIND,
)
from payrelay.outbox.converter import MessageConverter, UnitOfWorkLookup
from payrelay.repositories.outbox import OutboxEvent, OutboxStatistics
from payrelay.repositories.unit_of_work import UnitOfWork, UnitOfWorkFactory
from payrelay.results import Fatal, Ok, Result, classify_exception
from payrelay.transport.interface import Transport, deliver

logger = logging.getLogger(__name__)


@dataclass
class PublisherStats:
    """
    Running counters of an :class:`OutboxPublisher`.

    Attributes:
        ticks: Completed publisher ticks
        events_claimed: Rows claimed across all ticks
        events_published: Rows published and marked processed
        events_failed: Rows whose attempt was recorded as a failure
        fatal_failures: Failures that retrying cannot fix (alerted on)
        events_cleaned: Rows removed by cleanup runs
        last_tick_at: When the most recent tick finished
    """

    ticks: int = 0
    events_claimed: int = 0
    events_published: int = 0
    events_failed: int = 0
    fatal_failures: int = 0
    events_cleaned: int = 0
    last_tick_at: datetime | None = None


@dataclass(frozen=True)
class PublishBatchResult:
    claimed: int = 0
    published: int = 0
    failed: int = 0
    fatal: int = 0

    @property
    def is_empty(self) -> bool:
        return self.claimed == 0


class OutboxPublisher:
    """
    Publishes outbox rows through a transport.

    Example:
        >>> publisher = OutboxPublisher(uow_factory, transport, config=OutboxConfig())
        >>> result = await publisher.publish_pending_events()
        >>> result.published
        3
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        transport: Transport,
        *,
        converter: MessageConverter | None = None,
        config: OutboxConfig | None = None,
        messaging: MessagingConfig | None = None,
        registry: EventRegistry | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._uow_factory = uow_factory
        self._transport = transport
        self._converter = converter or MessageConverter(messaging)
        self._config = config or OutboxConfig()
        self._registry = registry or default_registry
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._stats = PublisherStats()

    @property
    def config(self) -> OutboxConfig:
        return self._config

    @property
    def stats(self) -> PublisherStats:
        return self._stats

    async def publish_pending_events(self) -> PublishBatchResult:
        """
        Run one publisher tick.

        Returns:
            Counts of claimed, published and failed rows
        """
        config = self._config
        published = failed = fatal = 0
        with self._tracer.span(
            "payrelay.outbox.publish_batch",
            {ATTR_BATCH_SIZE: config.batch_size, ATTR_MAX_RETRIES: config.max_retries},
        ) as span:
            async with self._uow_factory() as uow:
                rows = await uow.outbox.get_retryable_events(
                    config.max_retries, limit=config.batch_size
                )
                for row in rows:
                    result = await self._publish_row(uow, row)
                    if isinstance(result, Ok):
                        published += 1
                    else:
                        failed += 1
                        if isinstance(result, Fatal):
                            fatal += 1

            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(rows))

        batch = PublishBatchResult(
            claimed=len(rows), published=published, failed=failed, fatal=fatal
        )
        self._stats.ticks += 1
        self._stats.events_claimed += batch.claimed
        self._stats.events_published += batch.published
        self._stats.events_failed += batch.failed
        self._stats.fatal_failures += batch.fatal
        self._stats.last_tick_at = datetime.now(UTC)

        if batch.is_empty:
            logger.debug("No outbox events to publish")
        else:
            logger.info(
                "Published %d of %d outbox events",
                batch.published,
                batch.claimed,
                extra={
                    "claimed": batch.claimed,
                    "published": batch.published,
                    "failed": batch.failed,
                    "fatal": batch.fatal,
                },
            )
        return batch

    async def _prepare(self, uow: UnitOfWork, row: OutboxEvent) -> tuple[str, WireMessage]:
        event_class = self._registry.get(row.event_type)
        try:
            event = event_class.model_validate_json(row.payload)
        except pydantic.ValidationError as e:
            raise SerializationError(row.event_type, f"unreadable outbox payload: {e}") from e
        return await self._converter.convert(event, UnitOfWorkLookup(uow))

    async def _publish_row(self, uow: UnitOfWork, row: OutboxEvent) -> Result[None]:
        context = {
            "event_id": str(row.event_id),
            "event_type": row.event_type,
            "aggregate_id": row.aggregate_id,
            "retry_count": row.retry_count,
        }
        with self._tracer.span(
            "payrelay.outbox.publish_event",
            {ATTR_EVENT_ID: str(row.event_id), ATTR_EVENT_TYPE: row.event_type},
        ) as span:
            result: Result[None]
            try:
                destination, message = await self._prepare(uow, row)
            except Exception as e:
                result = classify_exception(e)
            else:
                result = await deliver(
                    self._transport,
                    destination,
                    message,
                    message_id=str(row.event_id),
                    headers=row.headers,
                    timeout=self._config.publish_timeout,
                    tracer=self._tracer,
                )

            try:
                async with uow.savepoint():
                    if isinstance(result, Ok):
                        await uow.outbox.mark_event_as_processed(row.event_id)
                    else:
                        await uow.outbox.record_event_failure(row.event_id, result.error)
            except Exception as e:
                # A published row left unprocessed is re-sent on the next tick.
                logger.error(
                    "Failed to settle outbox event %s: %s",
                    row.event_id,
                    e,
                    exc_info=True,
                    extra={**context, "error": str(e)},
                )
                result = classify_exception(e)

            if span:
                span.set_attribute(ATTR_RESULT_KIND, result.kind)

        match result:
            case Ok():
                logger.debug("Published outbox event %s", row.event_id, extra=context)
            case Fatal(error=error):
                logger.error(
                    "Outbox event %s cannot be published: %s",
                    row.event_id,
                    error,
                    exc_info=result.exception,
                    extra={**context, "error": error},
                )
            case _:
                logger.warning(
                    "Outbox event %s publish failed (attempt %d of %d): %s",
                    row.event_id,
                    row.retry_count + 1,
                    self._config.max_retries,
                    result.error,
                    extra={**context, "error": result.error},
                )
        return result

    async def cleanup_old_events(self) -> int:
        """
        Delete processed rows past retention and failed rows past the
        failed-row retention.

        Returns:
            Total number of rows deleted
        """
        config = self._config
        async with self._uow_factory() as uow:
            processed = await uow.outbox.cleanup_processed_events(config.retention_hours)
            expired = await uow.outbox.cleanup_expired_failed_events(
                config.failed_retention_hours, config.max_retries
            )

        total = processed + expired
        self._stats.events_cleaned += total
        if total:
            logger.info(
                "Outbox cleanup removed %d events",
                total,
                extra={"processed_deleted": processed, "failed_deleted": expired},
            )
        return total

    async def log_statistics(self) -> OutboxStatistics:
        """Log a statistics line and warn when alert thresholds are exceeded."""
        config = self._config
        async with self._uow_factory() as uow:
            statistics = await uow.outbox.get_statistics(config.max_retries)

        logger.info(
            "Outbox statistics: %d unprocessed, %d failed, %d processed",
            statistics.unprocessed_events,
            statistics.failed_events,
            statistics.processed_events,
            extra={
                "total_events": statistics.total_events,
                "unprocessed_events": statistics.unprocessed_events,
                "failed_events": statistics.failed_events,
                "processed_events": statistics.processed_events,
                "oldest_unprocessed_at": statistics.oldest_unprocessed_at,
            },
        )
        if statistics.unprocessed_events > config.unprocessed_alert_threshold:
            logger.warning(
                "Outbox backlog of %d unprocessed events exceeds %d",
                statistics.unprocessed_events,
                config.unprocessed_alert_threshold,
                extra={"unprocessed_events": statistics.unprocessed_events},
            )
        if statistics.failed_events > config.failed_alert_threshold:
            logger.warning(
                "%d outbox events exhausted their retries (threshold %d)",
                statistics.failed_events,
                config.failed_alert_threshold,
                extra={"failed_events": statistics.failed_events},
            )
        return statistics


__all__ = ["OutboxPublisher", "PublisherStats", "PublishBatchResult"]
