"""Retry controller: bounded attempts with a capped backoff schedule.

Backoff strategy:
  with a cap:    delay = min(base * 2^(attempt-1) + jitter, max_delay)
                 jitter = random(0, base * 0.1)
  without a cap: delay = base (fixed)

Only retryable failures are attempted again; everything else, and the last
failure once attempts run out, is re-raised unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from budget_toolkit.core.metrics import GATEWAY_ATTEMPTS
from budget_toolkit.gateway.errors import is_retryable
from budget_toolkit.gateway.types import ClientConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay schedule for one logical call."""

    max_attempts: int = 3
    base_delay_ms: int = 1500
    max_delay_ms: int | None = 32_000

    @classmethod
    def from_config(cls, config: ClientConfig) -> RetryPolicy:
        # max_retries counts physical attempts, never fewer than one
        return cls(
            max_attempts=max(1, config.max_retries),
            base_delay_ms=config.retry_delay_ms,
            max_delay_ms=config.max_retry_delay_ms,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) before the next one."""
        base = float(self.base_delay_ms)
        if self.max_delay_ms is None:
            return base / 1000.0
        exponential = base * (2 ** (attempt - 1))
        jitter = random.uniform(0, base * 0.1)
        return min(exponential + jitter, float(self.max_delay_ms)) / 1000.0

    def delays(self) -> Iterator[float]:
        """The waits between consecutive attempts (max_attempts - 1 of them)."""
        for attempt in range(1, self.max_attempts):
            yield self.delay_for(attempt)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    before_attempt: Callable[[], Awaitable[object]] | None = None,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: The unary remote call.
        policy: Attempt budget and delay schedule.
        before_attempt: Awaited before every physical attempt (rate limiting).
        retryable: Decides whether a failure is worth another attempt.
        sleep: Injected for tests.

    Returns:
        The operation's result.

    Raises:
        The last underlying error, unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        if before_attempt is not None:
            await before_attempt()

        try:
            result = await operation()
        except Exception as e:
            if not retryable(e):
                GATEWAY_ATTEMPTS.labels(result="fatal").inc()
                raise
            GATEWAY_ATTEMPTS.labels(result="retryable").inc()
            if attempt >= policy.max_attempts:
                logger.warning("Giving up after %d attempt(s): %s", attempt, e, extra={"attempt": attempt})
                raise

            delay = policy.delay_for(attempt)
            logger.info(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                policy.max_attempts,
                e,
                delay,
                extra={"attempt": attempt},
            )
            await sleep(delay)
            continue

        GATEWAY_ATTEMPTS.labels(result="success").inc()
        if attempt > 1:
            logger.debug("Succeeded on attempt %d/%d", attempt, policy.max_attempts)
        return result
