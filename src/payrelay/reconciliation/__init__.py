"""Requester-side retry of payment requests that were never confirmed."""

from payrelay.reconciliation.backoff import calculate_backoff, next_attempt_at
from payrelay.reconciliation.service import (
    TIMEOUT_REASON,
    ReconcileOutcome,
    ReconcileResult,
    ReconciliationReport,
    ReconciliationService,
)

__all__ = [
    "calculate_backoff",
    "next_attempt_at",
    "TIMEOUT_REASON",
    "ReconcileOutcome",
    "ReconcileResult",
    "ReconciliationReport",
    "ReconciliationService",
]
