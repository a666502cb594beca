"""Circuit Breaker guarding the chat-completion endpoint.

  - CLOSED: normal operation, calls pass through
  - OPEN: too many consecutive failures, calls are rejected immediately
  - HALF_OPEN: trial calls allowed for half_open_timeout_ms to probe recovery

Edges:
  CLOSED    --failure_threshold consecutive failures--> OPEN
  OPEN      --reset_timeout_ms elapsed, next call-->    HALF_OPEN
  HALF_OPEN --success-->                                CLOSED
  HALF_OPEN --failure or trial window lapsed-->         OPEN

A logical call is recorded once, after the retry controller is done with it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from budget_toolkit.core.metrics import CIRCUIT_TRANSITIONS
from budget_toolkit.gateway.errors import CircuitOpenError
from budget_toolkit.gateway.types import CircuitBreakerConfig

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class _CircuitStats:
    """Failure tracking for the circuit."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    total_rejections: int = 0
    last_failure_at: float = 0.0
    opened_at: float = 0.0
    half_opened_at: float = 0.0


class CircuitBreaker:
    """Single-endpoint circuit breaker.

    Usage:
        cb = CircuitBreaker(CircuitBreakerConfig(failure_threshold=5))

        await cb.before_call()  # raises CircuitOpenError while OPEN
        try:
            result = await do_call()
        except Exception:
            await cb.record_failure()
            raise
        await cb.record_success()
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._stats = _CircuitStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._stats.state

    @property
    def consecutive_failures(self) -> int:
        return self._stats.consecutive_failures

    def _transition(self, state: CircuitState, now: float) -> None:
        stats = self._stats
        stats.state = state
        if state == CircuitState.OPEN:
            stats.opened_at = now
        elif state == CircuitState.HALF_OPEN:
            stats.half_opened_at = now
        CIRCUIT_TRANSITIONS.labels(state=state.value).inc()

    async def before_call(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        async with self._lock:
            stats = self._stats
            now = self._clock()

            if stats.state == CircuitState.OPEN:
                if (now - stats.opened_at) * 1000 >= self.config.reset_timeout_ms:
                    self._transition(CircuitState.HALF_OPEN, now)
                    logger.info("Circuit transitioning to HALF_OPEN")
                    return
                stats.total_rejections += 1
                raise CircuitOpenError()

            if stats.state == CircuitState.HALF_OPEN:
                if (now - stats.half_opened_at) * 1000 < self.config.half_open_timeout_ms:
                    return
                # Trial window lapsed without a success
                self._transition(CircuitState.OPEN, now)
                stats.total_rejections += 1
                logger.warning("Circuit re-OPENED: no successful trial within %d ms", self.config.half_open_timeout_ms)
                raise CircuitOpenError()

    async def record_success(self) -> None:
        """Record a successful call.

        Only a HALF_OPEN trial closes the circuit. A late success from a call
        admitted before the circuit opened leaves OPEN untouched.
        """
        async with self._lock:
            stats = self._stats
            stats.total_successes += 1
            if stats.state == CircuitState.OPEN:
                return

            stats.consecutive_failures = 0
            if stats.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED, self._clock())
                logger.info("Circuit CLOSED (recovered)")

    async def record_failure(self) -> None:
        """Record a failed logical call; may open the circuit."""
        async with self._lock:
            stats = self._stats
            now = self._clock()
            stats.consecutive_failures += 1
            stats.total_failures += 1
            stats.last_failure_at = now

            if stats.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, now)
                logger.warning("Circuit re-OPENED: trial call failed")
                return

            if stats.state == CircuitState.CLOSED and stats.consecutive_failures >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN, now)
                logger.warning(
                    "Circuit OPENED after %d consecutive failures",
                    stats.consecutive_failures,
                )

    def reconfigure(self, config: CircuitBreakerConfig) -> None:
        """Swap thresholds; current state and counters are kept."""
        self.config = config

    def reset(self) -> None:
        """Manually reset the circuit to CLOSED."""
        self._stats.state = CircuitState.CLOSED
        self._stats.consecutive_failures = 0
        logger.info("Circuit manually RESET")

    def get_state(self) -> dict:
        """Get the current state of the circuit."""
        stats = self._stats
        return {
            "state": stats.state.value,
            "consecutive_failures": stats.consecutive_failures,
            "total_failures": stats.total_failures,
            "total_successes": stats.total_successes,
            "total_rejections": stats.total_rejections,
            "failure_threshold": self.config.failure_threshold,
        }
