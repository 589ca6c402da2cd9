"""Retry with exponential backoff and retryable-error classification for provider calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import httpx

from feed_pulse.errors import BudgetExceeded, TransientSyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRY_ATTEMPTS = 3
RETRY_DELAYS_MS: tuple[int, ...] = (1000, 2000, 4000)
RETRYABLE_HTTP_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "429",
    "500",
    "502",
    "503",
    "504",
    "network",
    "timeout",
    "timed out",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
)


@dataclass(slots=True)
class RetryResult(Generic[T]):
    """Outcome of a call wrapped in ``with_exponential_backoff``."""

    success: bool
    attempts: int
    result: T | None = None
    error: BaseException | None = None
    total_delay_ms: int = 0
    exhausted: bool = False

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


def is_retryable_error(error: BaseException) -> bool:
    """Rate limits, 5xx, timeouts and connection failures are retryable."""

    if isinstance(error, BudgetExceeded):
        return False
    if isinstance(error, TransientSyncError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_HTTP_STATUS_CODES
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    return _first_match(str(error).lower(), _RETRYABLE_PATTERNS) is not None


def with_exponential_backoff(
    fn: Callable[[], T],
    *,
    max_attempts: int = MAX_RETRY_ATTEMPTS,
    delays_ms: tuple[int, ...] | list[int] = RETRY_DELAYS_MS,
    sleep: Callable[[float], None] = time.sleep,
    classify: Callable[[BaseException], bool] = is_retryable_error,
) -> RetryResult[T]:
    """Call ``fn`` until it succeeds, fails non-retryably or runs out of attempts.

    Before retry ``n`` (1-based) the call sleeps ``delays_ms[n - 1]``, or the last
    configured delay when the list is shorter.
    """

    total_delay_ms = 0
    last_error: BaseException | None = None
    attempts = 0
    for attempt in range(1, max(1, max_attempts) + 1):
        attempts = attempt
        try:
            return RetryResult(
                success=True,
                attempts=attempt,
                result=fn(),
                total_delay_ms=total_delay_ms,
            )
        except Exception as error:  # noqa: BLE001
            last_error = error
            if not classify(error):
                logger.debug("Non-retryable failure on attempt %s: %s", attempt, error)
                return RetryResult(
                    success=False,
                    attempts=attempt,
                    error=error,
                    total_delay_ms=total_delay_ms,
                )
            if attempt >= max_attempts:
                break
            delay_ms = _delay_for(attempt, delays_ms)
            logger.warning(
                "Retryable failure on attempt %s/%s: %s; retrying in %sms",
                attempt,
                max_attempts,
                error,
                delay_ms,
            )
            sleep(delay_ms / 1000)
            total_delay_ms += delay_ms

    return RetryResult(
        success=False,
        attempts=attempts,
        error=last_error,
        total_delay_ms=total_delay_ms,
        exhausted=True,
    )


def _delay_for(attempt: int, delays_ms: tuple[int, ...] | list[int]) -> int:
    if not delays_ms:
        return 0
    index = min(attempt - 1, len(delays_ms) - 1)
    return int(delays_ms[index])


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
