"""Token-bucket rate limiter for outbound chat-completion attempts.

Capacity is ``max_tokens_per_minute``; the bucket refills continuously so
that an empty bucket is full again after ``refill_interval_ms``. Each physical
attempt (retries included) consumes one token. When the bucket is empty the
caller sleeps until a token is available instead of failing.

Safe under concurrent acquisition via asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from budget_toolkit.core.metrics import RATE_LIMIT_WAIT
from budget_toolkit.gateway.types import RateLimitConfig

logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """Token bucket shared by all in-flight calls of one gateway.

    Usage:
        limiter = TokenBucketRateLimiter(RateLimitConfig(max_tokens_per_minute=50))

        # Before every physical attempt:
        await limiter.acquire()
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._configure(config or RateLimitConfig())
        self._tokens = float(self.capacity)
        self._last_refill = self._clock()

    def _configure(self, config: RateLimitConfig) -> None:
        self.capacity = config.max_tokens_per_minute
        # Tokens per second
        self.rate = config.max_tokens_per_minute / (config.refill_interval_ms / 1000.0)

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._last_refill = now

    async def acquire(self) -> float:
        """Wait until a token is available, then consume it.

        Returns the total time spent waiting, in seconds.
        """
        waited = 0.0
        while True:
            async with self._lock:
                self._refill(self._clock())

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    if waited:
                        RATE_LIMIT_WAIT.observe(waited)
                    return waited

                # Short by a fraction of a token
                deficit = 1.0 - self._tokens
                wait = deficit / self.rate

            # Sleep outside the lock so other coroutines can refill
            logger.debug("Rate limiter: waiting %.2fs (capacity=%d)", wait, self.capacity)
            await asyncio.sleep(wait)
            waited += wait

    def reconfigure(self, config: RateLimitConfig) -> None:
        """Apply new sizing, keeping the current fill level (clamped to capacity)."""
        self._refill(self._clock())
        self._configure(config)
        self._tokens = min(self._tokens, float(self.capacity))
        logger.info(
            "Rate limiter reconfigured: capacity=%d, refill=%.2f tokens/s",
            self.capacity,
            self.rate,
        )

    @property
    def available_tokens(self) -> float:
        self._refill(self._clock())
        return self._tokens

    def get_stats(self) -> dict:
        """Get current limiter state."""
        return {
            "available_tokens": round(self.available_tokens, 3),
            "capacity": self.capacity,
            "refill_per_second": round(self.rate, 3),
        }
