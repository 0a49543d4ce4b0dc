"""Unit tests for exponential backoff scheduling."""

from datetime import UTC, datetime, timedelta

import pytest

from payrelay.config import ReconciliationConfig
from payrelay.reconciliation.backoff import calculate_backoff, next_attempt_at


class TestCalculateBackoff:
    @pytest.mark.parametrize("attempt, expected", [(0, 2.0), (1, 4.0), (2, 8.0), (5, 64.0)])
    def test_doubles_per_attempt(self, attempt: int, expected: float) -> None:
        assert calculate_backoff(attempt, 2.0) == expected

    def test_negative_attempt_rejected(self) -> None:
        with pytest.raises(ValueError):
            calculate_backoff(-1, 1.0)


class TestNextAttemptAt:
    def test_adds_timeout_and_backoff(self) -> None:
        config = ReconciliationConfig(confirmation_timeout=30.0, base_retry_delay=1.0)
        now = datetime(2026, 1, 1, tzinfo=UTC)

        assert next_attempt_at(now, 0, config) == now + timedelta(seconds=31)
        assert next_attempt_at(now, 3, config) == now + timedelta(seconds=38)

    def test_gap_never_below_base_delay_power(self) -> None:
        config = ReconciliationConfig(confirmation_timeout=0.0, base_retry_delay=0.5)
        now = datetime(2026, 1, 1, tzinfo=UTC)

        for attempt in range(6):
            gap = next_attempt_at(now, attempt, config) - now
            assert gap.total_seconds() >= 0.5 * 2**attempt
