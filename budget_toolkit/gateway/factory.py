"""Build a gateway from environment settings plus the YAML ``llm:`` section.

The API key comes from the environment (``ANTHROPIC_API_KEY``); everything
user-tunable comes from the YAML file. Keys may use the config file's
camelCase names or the ClientConfig field names.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from budget_toolkit.core.config import Settings, load_yaml_config, settings as default_settings
from budget_toolkit.gateway.errors import ConfigurationError
from budget_toolkit.gateway.gateway import LlmGateway
from budget_toolkit.gateway.transport import ChatTransport
from budget_toolkit.gateway.types import ClientConfig

logger = logging.getLogger(__name__)

_LLM_KEYS: dict[str, str] = {
    "model": "model",
    "temperature": "temperature",
    "maxTokens": "max_tokens",
    "topP": "top_p",
    "topK": "top_k",
    "stopSequences": "stop_sequences",
    "systemPrompt": "system_prompt",
    "maxRetries": "max_retries",
    "retryDelayMs": "retry_delay_ms",
    "maxRetryDelayMs": "max_retry_delay_ms",
    "batchSize": "batch_size",
    "maxConcurrent": "max_concurrent",
}

_RATE_LIMIT_KEYS: dict[str, str] = {
    "maxTokensPerMinute": "max_tokens_per_minute",
    "refillInterval": "refill_interval_ms",
}

_CIRCUIT_BREAKER_KEYS: dict[str, str] = {
    "failureThreshold": "failure_threshold",
    "resetTimeout": "reset_timeout_ms",
    "halfOpenTimeout": "half_open_timeout_ms",
}


def _rename(section: Mapping[str, Any], names: dict[str, str]) -> dict[str, Any]:
    return {names.get(key, key): value for key, value in section.items()}


def _pop_nested(overrides: dict[str, Any], camel: str, snake: str, names: dict[str, str]) -> dict[str, Any] | None:
    """Pop both spellings of a nested section and merge them, camelCase last."""
    present = camel in overrides or snake in overrides
    merged = _rename(overrides.pop(snake, None) or {}, names)
    merged.update(_rename(overrides.pop(camel, None) or {}, names))
    return merged if present else None


def llm_section_to_overrides(section: Mapping[str, Any]) -> dict[str, Any]:
    """Map a YAML ``llm:`` section onto ClientConfig field names."""
    overrides = _rename(section, _LLM_KEYS)

    rate_limit = _pop_nested(overrides, "rateLimit", "rate_limit", _RATE_LIMIT_KEYS)
    if rate_limit is not None:
        overrides["rate_limit"] = rate_limit

    breaker = _pop_nested(overrides, "circuitBreaker", "circuit_breaker", _CIRCUIT_BREAKER_KEYS)
    if breaker is not None:
        overrides["circuit_breaker"] = breaker

    return overrides


def create_client(
    app_settings: Settings | None = None,
    *,
    config_path: str | Path | None = None,
    transport: ChatTransport | None = None,
) -> LlmGateway:
    """Create a gateway for the categorization commands.

    Raises:
        ConfigurationError: if the API key or the ``llm:`` section is missing,
            or the resulting config is invalid.
    """
    app_settings = app_settings or default_settings
    if not app_settings.anthropic_api_key:
        raise ConfigurationError("Anthropic API key is required. Set ANTHROPIC_API_KEY in your .env file.")

    path = Path(config_path or app_settings.llm_config_file)
    llm_section = load_yaml_config(path).get("llm")
    if not llm_section:
        raise ConfigurationError(
            f"LLM configuration missing from {path}. Add an llm section with model and other settings."
        )

    overrides = llm_section_to_overrides(llm_section)
    overrides.update(
        api_key=app_settings.anthropic_api_key,
        base_url=app_settings.anthropic_base_url,
        timeout_ms=app_settings.anthropic_timeout_ms,
    )

    gateway = LlmGateway(overrides, transport=transport)
    logger.info("Created LLM gateway from %s (model=%s)", path, gateway.get_config()["model"])
    return gateway
