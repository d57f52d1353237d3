"""Bounded exponential-backoff retry for async setup operations.

Used for fixture restores, live-system lookups and creates. Non-retryable
errors (safety violations, assertion failures, configuration problems) are
re-raised on the first attempt; retryable ones are re-raised unchanged once
the attempt budget is spent.
"""
from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import anyio
import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS = {502, 503, 504}
_RETRYABLE_MESSAGE = re.compile(
    r"timed? ?out|timeout|connection (reset|refused|aborted)|network|temporarily unavailable",
    re.IGNORECASE,
)


def default_is_retryable(error: BaseException) -> bool:
    """Classify an error as transient.

    An explicit ``retryable`` attribute on the error always decides. After
    that, assertion failures are never retried; timeouts, connection
    problems, gateway errors and locked SQLite databases are.
    """
    explicit = getattr(error, "retryable", None)
    if isinstance(explicit, bool):
        return explicit
    if isinstance(error, AssertionError):
        return False
    if isinstance(error, (TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in _RETRYABLE_STATUS
    if isinstance(error, sqlite3.OperationalError):
        message = str(error).lower()
        return "locked" in message or "busy" in message
    return bool(_RETRYABLE_MESSAGE.search(str(error)))


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    is_retryable: Callable[[BaseException], bool] = default_is_retryable
    attempt_timeout: Optional[float] = None
    max_delay: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must not be negative, got {self.base_delay}")

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry ``retry_number`` (1-based)."""
        delay = self.base_delay * (2 ** (retry_number - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class RetryExecutor:
    """Runs an async operation under a ``RetryPolicy``."""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = anyio.sleep) -> None:
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        description: str = "operation",
    ) -> T:
        policy = policy or RetryPolicy()
        attempt = 1
        while True:
            try:
                if policy.attempt_timeout is not None:
                    with anyio.fail_after(policy.attempt_timeout):
                        return await operation()
                return await operation()
            except Exception as exc:
                if not policy.is_retryable(exc):
                    logger.debug("[RETRY] %s failed with non-retryable %s", description, type(exc).__name__)
                    raise
                if attempt >= policy.max_attempts:
                    logger.warning(
                        "[RETRY] %s failed after %d attempt(s): %s",
                        description,
                        attempt,
                        exc,
                    )
                    raise
                delay = policy.delay_for(attempt)
                logger.info(
                    "[RETRY] %s attempt %d/%d failed (%s: %s), retrying in %.2fs",
                    description,
                    attempt,
                    policy.max_attempts,
                    type(exc).__name__,
                    exc,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1
