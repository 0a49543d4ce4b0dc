"""
Span attribute names used across payrelay components.

Messaging and database attributes follow OpenTelemetry semantic
conventions; domain attributes live under the ``payrelay.`` prefix.
"""

# Aggregates
ATTR_AGGREGATE_ID = "payrelay.aggregate.id"
ATTR_AGGREGATE_TYPE = "payrelay.aggregate.type"
ATTR_ORDER_ID = "payrelay.order.id"
ATTR_PAYMENT_ID = "payrelay.payment.id"
ATTR_TRANSACTION_ID = "payrelay.transaction.id"

# Events and outbox rows
ATTR_EVENT_ID = "payrelay.event.id"
ATTR_EVENT_TYPE = "payrelay.event.type"
ATTR_EVENT_COUNT = "payrelay.event.count"
ATTR_BATCH_SIZE = "payrelay.batch.size"
ATTR_RETRY_COUNT = "payrelay.retry.count"
ATTR_MAX_RETRIES = "payrelay.retry.max"

# Reconciliation
ATTR_ATTEMPT_NUMBER = "payrelay.retry.attempt"
ATTR_RESULT_KIND = "payrelay.result.kind"

# Commands
ATTR_COMMAND = "payrelay.command"

# Errors
ATTR_ERROR_TYPE = "error.type"

# Database (OTEL semantic)
ATTR_DB_SYSTEM = "db.system"
ATTR_DB_OPERATION = "db.operation"

# Messaging (OTEL semantic)
ATTR_MESSAGING_SYSTEM = "messaging.system"
ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
ATTR_MESSAGING_MESSAGE_ID = "messaging.message.id"

__all__ = [
    "ATTR_AGGREGATE_ID",
    "ATTR_AGGREGATE_TYPE",
    "ATTR_ORDER_ID",
    "ATTR_PAYMENT_ID",
    "ATTR_TRANSACTION_ID",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_EVENT_COUNT",
    "ATTR_BATCH_SIZE",
    "ATTR_RETRY_COUNT",
    "ATTR_MAX_RETRIES",
    "ATTR_ATTEMPT_NUMBER",
    "ATTR_RESULT_KIND",
    "ATTR_COMMAND",
    "ATTR_ERROR_TYPE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_MESSAGE_ID",
]
