"""LLM Gateway — orchestrator integrating all gateway components.

Pipeline for one logical chat call:
  1. Merge per-call overrides into the client config
  2. Check the Circuit Breaker (fail fast while OPEN)
  3. Retry loop: acquire a Rate Limiter token, send via the transport
  4. Normalize the content blocks into one string
  5. Record the outcome on the Circuit Breaker (once per logical call)

Usage:
    gateway = LlmGateway(ClientConfig(api_key="sk-ant-..."))

    text = await gateway.chat([{"role": "user", "content": "Categorize: ..."}])
    texts = await gateway.chat_batch(conversations, temperature=0.0)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from budget_toolkit.core.metrics import CALL_DURATION, GATEWAY_CALLS
from budget_toolkit.gateway.batch import BatchDispatcher
from budget_toolkit.gateway.circuit_breaker import CircuitBreaker
from budget_toolkit.gateway.config_manager import (
    build_effective_config,
    requires_transport_rebuild,
    sanitize_config,
)
from budget_toolkit.gateway.errors import (
    CircuitOpenError,
    ConfigurationError,
    ResponseFormatError,
)
from budget_toolkit.gateway.normalizer import normalize_response
from budget_toolkit.gateway.rate_limiter import TokenBucketRateLimiter
from budget_toolkit.gateway.retry import RetryPolicy, call_with_retry
from budget_toolkit.gateway.transport import (
    AnthropicTransport,
    ChatTransport,
    build_request_payload,
)
from budget_toolkit.gateway.types import TRANSPORT_FIELDS, ChatMessage, ClientConfig

logger = logging.getLogger(__name__)

Conversation = Sequence[ChatMessage | dict[str, Any]]

# Bound to the client instance, not to a single call
_CLIENT_ONLY_FIELDS = frozenset(TRANSPORT_FIELDS) | {"rate_limit", "circuit_breaker"}


class LlmGateway:
    """Resilient chat-completion client.

    Each instance owns its config, circuit breaker and rate limiter; nothing
    is shared between instances.
    """

    def __init__(
        self,
        config: ClientConfig | Mapping[str, Any] | None = None,
        *,
        transport: ChatTransport | None = None,
        transport_factory: Callable[[ClientConfig], ChatTransport] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            config: A ClientConfig, or a mapping of overrides on the defaults
            transport: Injected transport, used as-is for the client's lifetime
            transport_factory: Builds the transport lazily from the config
                (defaults to AnthropicTransport.from_config)
            clock: Monotonic clock shared by the breaker and the limiter
        """
        if isinstance(config, ClientConfig):
            self._config = build_effective_config(config)
        else:
            self._config = build_effective_config(ClientConfig(), config)

        self._transport = transport
        self._transport_injected = transport is not None
        self._default_factory = transport_factory is None
        self._transport_factory = transport_factory or AnthropicTransport.from_config
        self._check_transport_config(self._config)

        self.rate_limiter = TokenBucketRateLimiter(self._config.rate_limit, clock=clock)
        self.circuit_breaker = CircuitBreaker(self._config.circuit_breaker, clock=clock)

        logger.debug("Initializing LLM gateway using %s", self._config.model)

    def _check_transport_config(self, config: ClientConfig) -> None:
        """Fail early when the default Anthropic transport could not be built."""
        if self._default_factory and not self._transport_injected and not config.api_key:
            raise ConfigurationError("An Anthropic API key is required (set ANTHROPIC_API_KEY)")

    def _get_transport(self) -> ChatTransport:
        """Get or lazily (re)build the transport."""
        if self._transport is None:
            self._transport = self._transport_factory(self._config)
            logger.debug("Built transport for %s", self._config.base_url)
        return self._transport

    def _call_config(self, overrides: Mapping[str, Any]) -> ClientConfig:
        client_only = sorted(k for k, v in overrides.items() if k in _CLIENT_ONLY_FIELDS and v is not None)
        if client_only:
            raise ConfigurationError(
                f"{', '.join(client_only)} can only be changed with update_config(), not per call"
            )
        return build_effective_config(self._config, overrides)

    async def chat(self, messages: Conversation, **overrides: Any) -> str:
        """Send one conversation and return the canonical response text.

        Overrides apply to this call only (model, temperature, max_tokens,
        system_prompt, functions, function_call, ...).
        """
        config = self._call_config(overrides)
        return await self._chat(messages, config)

    async def chat_batch(
        self,
        message_batches: Sequence[Conversation],
        *,
        return_exceptions: bool = False,
        **overrides: Any,
    ) -> list[str | BaseException]:
        """Send many independent conversations; results follow input order."""
        config = self._call_config(overrides)
        dispatcher = BatchDispatcher(
            lambda messages: self._chat(messages, config),
            batch_size=config.batch_size,
            max_concurrent=config.max_concurrent,
        )
        logger.info(
            "Dispatching batch of %d conversation(s) (batch_size=%d, max_concurrent=%d)",
            len(message_batches),
            config.batch_size,
            config.max_concurrent,
        )
        return await dispatcher.run(list(message_batches), return_exceptions=return_exceptions)

    async def _chat(self, messages: Conversation, config: ClientConfig) -> str:
        conversation = [ChatMessage.coerce(m) for m in messages]
        if not conversation:
            raise ValueError("A conversation needs at least one message")

        payload = build_request_payload(conversation, config)
        transport = self._get_transport()

        try:
            await self.circuit_breaker.before_call()
        except CircuitOpenError:
            GATEWAY_CALLS.labels(outcome="circuit_open").inc()
            raise

        start = time.monotonic()
        try:
            data = await call_with_retry(
                lambda: transport.send(payload),
                RetryPolicy.from_config(config),
                before_attempt=self.rate_limiter.acquire,
            )
            text = normalize_response(data)
        except ResponseFormatError:
            # Not a breaker failure: the endpoint answered
            await self.circuit_breaker.record_success()
            GATEWAY_CALLS.labels(outcome="bad_response").inc()
            raise
        except Exception as e:
            await self.circuit_breaker.record_failure()
            logger.warning(
                "Chat call failed: %s",
                e,
                extra={"model": config.model, "circuit_state": self.circuit_breaker.state.value},
            )
            GATEWAY_CALLS.labels(outcome="failure").inc()
            raise
        finally:
            CALL_DURATION.observe(time.monotonic() - start)

        await self.circuit_breaker.record_success()
        GATEWAY_CALLS.labels(outcome="success").inc()
        return text

    def update_config(self, **changes: Any) -> None:
        """Merge ``changes`` into the live config.

        Transport-identity changes (api_key, base_url, timeout_ms) drop the
        current transport so the next call rebuilds it. Everything else takes
        effect on the next call.
        """
        old = self._config
        new = build_effective_config(old, changes)
        self._check_transport_config(new)

        if requires_transport_rebuild(old, new):
            if self._transport_injected:
                logger.debug("Transport identity changed; keeping injected transport")
            else:
                self._transport = None

        if new.rate_limit != old.rate_limit:
            self.rate_limiter.reconfigure(new.rate_limit)
        if new.circuit_breaker != old.circuit_breaker:
            self.circuit_breaker.reconfigure(new.circuit_breaker)

        self._config = new

    def get_config(self) -> dict[str, Any]:
        """Effective config without the API key or absent optional fields."""
        return sanitize_config(self._config)

    def get_status(self) -> dict[str, Any]:
        """Get comprehensive gateway status."""
        return {
            "model": self._config.model,
            "circuit": self.circuit_breaker.get_state(),
            "rate_limit": self.rate_limiter.get_stats(),
            "transport_ready": self._transport is not None,
        }
