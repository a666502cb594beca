"""Prometheus metrics for the LLM gateway."""

from prometheus_client import Counter, Histogram

GATEWAY_CALLS = Counter(
    "llm_gateway_calls_total",
    "Logical chat calls by outcome",
    ["outcome"],
)

GATEWAY_ATTEMPTS = Counter(
    "llm_gateway_attempts_total",
    "Physical transport attempts by result",
    ["result"],
)

CIRCUIT_TRANSITIONS = Counter(
    "llm_gateway_circuit_transitions_total",
    "Circuit breaker transitions by target state",
    ["state"],
)

RATE_LIMIT_WAIT = Histogram(
    "llm_gateway_rate_limit_wait_seconds",
    "Time spent waiting for a rate limit token",
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 2.5, 5, 10, 30, 60],
)

CALL_DURATION = Histogram(
    "llm_gateway_call_duration_seconds",
    "Duration of logical chat calls, retries included",
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120],
)
