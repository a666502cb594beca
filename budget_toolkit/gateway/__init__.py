"""LLM Gateway Layer.

Turns the remote chat-completion API into a dependable primitive:
  - Configuration Manager (merge, validation, secret redaction)
  - Token-bucket Rate Limiter
  - Circuit Breaker (CLOSED / OPEN / HALF_OPEN)
  - Retry Controller (capped exponential backoff with jitter)
  - Response Normalizer (content blocks -> canonical string)
  - Batch Dispatcher (bounded concurrency, order-preserving)
"""
