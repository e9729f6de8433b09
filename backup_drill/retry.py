"""Retry with exponential backoff."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """All attempts failed. ``last_error`` holds the final exception."""

    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{description} failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def retry_with_backoff(
    operation: Callable[[], T],
    attempts: int,
    base_delay: float,
    description: str = "operation",
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` up to ``attempts`` times.

    The first attempt is immediate. After the n-th failure the call sleeps
    ``base_delay * 2 ** (n - 1)`` seconds. Exceptions outside ``retry_on``
    propagate immediately.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
        except retry_on as e:
            if attempt >= attempts:
                logger.error(f"{description} failed after {attempts} attempt(s): {e}")
                raise RetryExhausted(description, attempts, e) from e
            logger.warning(f"{description}: attempt {attempt}/{attempts} failed ({e}), retrying in {delay:g}s...")
            sleep(delay)
            delay *= 2
        else:
            if attempt > 1:
                logger.info(f"{description} succeeded on attempt {attempt}")
            return result

    raise AssertionError("unreachable")
