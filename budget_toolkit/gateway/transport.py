"""Transport layer — the raw chat-completion call.

``ChatTransport`` is the seam the gateway depends on; tests substitute a fake.
``AnthropicTransport`` speaks the Anthropic Messages API over httpx:
  - POST {base_url}/v1/messages with x-api-key / anthropic-version headers
  - timeouts, connection errors, 429, 5xx, 529 -> TransientTransportError
  - other 4xx -> TransportRequestError
  - non-JSON body -> ResponseFormatError
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx

from budget_toolkit.gateway.errors import (
    ConfigurationError,
    ResponseFormatError,
    TransientTransportError,
    TransportRequestError,
)
from budget_toolkit.gateway.types import ChatMessage, ChatRole, ClientConfig

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

# 529 is Anthropic's "overloaded"
_RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504, 529})


def build_request_payload(messages: Sequence[ChatMessage], config: ClientConfig) -> dict[str, Any]:
    """Build the Messages API request body.

    System-role messages are lifted into ``system`` after the configured
    system prompt; absent optional fields are left out entirely.
    """
    system_parts: list[str] = []
    if config.system_prompt:
        system_parts.append(config.system_prompt)

    wire_messages: list[dict[str, str]] = []
    for message in messages:
        if message.role == ChatRole.SYSTEM:
            system_parts.append(message.content)
        else:
            wire_messages.append(message.to_dict())

    payload: dict[str, Any] = {
        "model": config.model,
        "messages": wire_messages,
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
    }
    if system_parts:
        payload["system"] = "\n\n".join(system_parts)
    if config.top_p is not None:
        payload["top_p"] = config.top_p
    if config.top_k is not None:
        payload["top_k"] = config.top_k
    if config.stop_sequences:
        payload["stop_sequences"] = list(config.stop_sequences)
    if config.metadata:
        payload["metadata"] = dict(config.metadata)
    if config.functions:
        payload["tools"] = [fn.to_tool() for fn in config.functions]
    if config.function_call is not None:
        payload["tool_choice"] = config.function_call.to_wire()
    return payload


class ChatTransport(ABC):
    """A single remote chat-completion call."""

    @abstractmethod
    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send one request body and return the decoded response body."""
        ...


class AnthropicTransport(ChatTransport):
    """Anthropic Messages API adapter."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        timeout_ms: int = 30_000,
    ):
        if not api_key:
            raise ConfigurationError("An Anthropic API key is required (set ANTHROPIC_API_KEY)")
        self.api_key = api_key
        self.api_url = base_url.rstrip("/") + "/v1/messages"
        self.timeout = timeout_ms / 1000.0

    @classmethod
    def from_config(cls, config: ClientConfig) -> AnthropicTransport:
        return cls(api_key=config.api_key, base_url=config.base_url, timeout_ms=config.timeout_ms)

    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.api_url,
                    json=payload,
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": ANTHROPIC_VERSION,
                        "content-type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise TransientTransportError(f"Timeout after {self.timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise TransientTransportError(str(e) or type(e).__name__) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug(
            "POST %s -> %d in %d ms",
            self.api_url,
            resp.status_code,
            elapsed_ms,
            extra={"model": payload.get("model"), "status_code": resp.status_code},
        )

        if resp.status_code >= 400:
            message = f"{resp.status_code} {_error_message(resp)}"
            if resp.status_code in _RETRYABLE_STATUS or resp.status_code >= 500:
                raise TransientTransportError(message, status_code=resp.status_code)
            raise TransportRequestError(message, status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise ResponseFormatError(f"Response body is not valid JSON: {e}") from e


def _error_message(resp: httpx.Response) -> str:
    """Pull the human-readable message out of an API error body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip() or resp.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return resp.reason_phrase
