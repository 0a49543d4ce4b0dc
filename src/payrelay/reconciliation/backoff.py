"""
Retry scheduling for outstanding payment requests.

A request sent at ``t`` with ``retry_count`` retries behind it becomes due
at ``t + confirmation_timeout + base_retry_delay * 2**retry_count``. The
gap between attempt *i* and *i + 1* therefore never drops below
``base_retry_delay * 2**i``.
"""

from datetime import datetime, timedelta

from payrelay.config import ReconciliationConfig


def calculate_backoff(attempt: int, base_delay: float) -> float:
    """
    Exponential backoff delay in seconds.

    Args:
        attempt: Retries already performed (0-based)
        base_delay: Delay before the first retry

    Example:
        >>> calculate_backoff(0, 1.0)
        1.0
        >>> calculate_backoff(3, 1.0)
        8.0
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    return base_delay * (2**attempt)


def next_attempt_at(now: datetime, retry_count: int, config: ReconciliationConfig) -> datetime:
    """When a request sent at ``now`` after ``retry_count`` retries becomes due."""
    return now + timedelta(
        seconds=config.confirmation_timeout
        + calculate_backoff(retry_count, config.base_retry_delay)
    )


__all__ = ["calculate_backoff", "next_attempt_at"]
