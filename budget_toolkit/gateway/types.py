"""Core types and DTOs for the LLM gateway client."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class ChatRole(str, Enum):
    """Roles a conversation message can carry."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ChatMessage:
    """A single message in a conversation."""

    role: ChatRole
    content: str

    @classmethod
    def coerce(cls, value: ChatMessage | dict[str, Any]) -> ChatMessage:
        """Accept either a ChatMessage or a plain ``{"role", "content"}`` dict."""
        if isinstance(value, ChatMessage):
            return value
        return cls(role=ChatRole(value["role"]), content=value["content"])

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


# ---------------------------------------------------------------------------
# Structured output declarations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunctionSpec:
    """A function the model may call instead of answering in free text.

    ``parameters`` is a JSON schema object with ``properties`` and ``required``.
    """

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: FunctionSpec | dict[str, Any]) -> FunctionSpec:
        if isinstance(value, FunctionSpec):
            return value
        return cls(
            name=value["name"],
            description=value.get("description", ""),
            parameters=dict(value.get("parameters") or {}),
        )

    def to_tool(self) -> dict[str, Any]:
        """Render as an entry of the Messages API ``tools`` list."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": self.parameters.get("properties", {}),
                "required": self.parameters.get("required", []),
            },
        }


@dataclass(frozen=True)
class ToolChoice:
    """Forces the model to answer through the named function."""

    name: str

    @classmethod
    def coerce(cls, value: ToolChoice | dict[str, Any]) -> ToolChoice:
        if isinstance(value, ToolChoice):
            return value
        return cls(name=value["name"])

    def to_wire(self) -> dict[str, str]:
        return {"type": "tool", "name": self.name}


# ---------------------------------------------------------------------------
# Response blocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextBlock:
    """Free-text segment of a response."""

    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    """Structured tool-invocation segment of a response."""

    input: Any
    name: str = ""
    id: str = ""


ResponseBlock = Union[TextBlock, ToolUseBlock]


# ---------------------------------------------------------------------------
# Client config
# ---------------------------------------------------------------------------


@dataclass
class RateLimitConfig:
    """Token bucket sizing: capacity and the window it refills over."""

    max_tokens_per_minute: int = 50_000
    refill_interval_ms: int = 60_000


@dataclass
class CircuitBreakerConfig:
    """Thresholds for opening the circuit and probing recovery."""

    failure_threshold: int = 5
    reset_timeout_ms: int = 60_000
    half_open_timeout_ms: int = 30_000


@dataclass
class ClientConfig:
    """Effective configuration for one gateway instance.

    Optional fields use ``None`` for "absent"; absent fields are never sent
    to the remote endpoint and never reported by ``get_config()``.
    """

    # Transport identity
    api_key: str = ""
    base_url: str = "https://api.anthropic.com"
    timeout_ms: int = 30_000

    # Model / message parameters
    model: str = "claude-sonnet-4-5"
    max_tokens: int = 2000
    temperature: float = 0.2
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: list[str] | None = None
    system_prompt: str | None = None
    metadata: dict[str, str] | None = None

    # Function calling
    functions: list[FunctionSpec] | None = None
    function_call: ToolChoice | None = None

    # Retry
    max_retries: int = 3
    retry_delay_ms: int = 1500
    max_retry_delay_ms: int | None = 32_000

    # Batching
    batch_size: int = 10
    max_concurrent: int = 3

    # Resilience
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)


# Fields that identify the underlying transport; changing any of them
# invalidates the current transport handle.
TRANSPORT_FIELDS: tuple[str, ...] = ("api_key", "base_url", "timeout_ms")

# Fields whose value is a nested config dataclass.
NESTED_FIELDS: dict[str, type] = {
    "rate_limit": RateLimitConfig,
    "circuit_breaker": CircuitBreakerConfig,
}
