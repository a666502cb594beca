"""Configuration Manager — merging, validation and redaction of ClientConfig.

Merge rules:
  - override fields replace base fields key by key
  - an override explicitly set to None is absent, not a blank override
  - nested rate_limit / circuit_breaker overrides merge key by key
  - unknown keys are rejected
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from budget_toolkit.gateway.errors import ConfigurationError
from budget_toolkit.gateway.types import (
    NESTED_FIELDS,
    TRANSPORT_FIELDS,
    ClientConfig,
    FunctionSpec,
    ToolChoice,
)

logger = logging.getLogger(__name__)

_CONFIG_FIELDS = frozenset(f.name for f in dataclasses.fields(ClientConfig))
_SECRET_FIELDS = frozenset({"api_key"})

# Accepted override names that map onto a ClientConfig field
_FIELD_ALIASES = {"tool_choice": "function_call"}


def build_effective_config(
    base: ClientConfig,
    overrides: Mapping[str, Any] | None = None,
) -> ClientConfig:
    """Return a new config with ``overrides`` applied on top of ``base``.

    ``base`` is never mutated. The result is validated.
    """
    changes: dict[str, Any] = {}
    for key, value in _resolve_aliases(overrides or {}).items():
        if key not in _CONFIG_FIELDS:
            raise ConfigurationError(f"Unknown configuration field: {key}")
        if value is None:
            continue
        changes[key] = _coerce_field(base, key, value)

    merged = dataclasses.replace(base, **changes) if changes else dataclasses.replace(base)
    validate_config(merged)
    return merged


def _resolve_aliases(overrides: Mapping[str, Any]) -> dict[str, Any]:
    resolved = dict(overrides)
    for alias, name in _FIELD_ALIASES.items():
        if alias not in resolved:
            continue
        value = resolved.pop(alias)
        if value is None:
            continue
        if resolved.get(name) is not None:
            raise ConfigurationError(f"Set either {alias} or {name}, not both")
        resolved[name] = value
    return resolved


def _coerce_field(base: ClientConfig, key: str, value: Any) -> Any:
    if key in NESTED_FIELDS:
        nested_cls = NESTED_FIELDS[key]
        if isinstance(value, nested_cls):
            return dataclasses.replace(value)
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"{key} must be a mapping, got {type(value).__name__}")
        current = getattr(base, key)
        known = {f.name for f in dataclasses.fields(nested_cls)}
        partial = {}
        for sub_key, sub_value in value.items():
            if sub_key not in known:
                raise ConfigurationError(f"Unknown configuration field: {key}.{sub_key}")
            if sub_value is not None:
                partial[sub_key] = sub_value
        return dataclasses.replace(current, **partial)

    if key == "functions":
        try:
            return [FunctionSpec.coerce(fn) for fn in value]
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Invalid function spec: {e}") from e

    if key == "function_call":
        try:
            return ToolChoice.coerce(value)
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Invalid function_call: {e}") from e

    if key == "stop_sequences":
        return list(value)

    if key == "metadata":
        return dict(value)

    return value


def validate_config(config: ClientConfig) -> None:
    """Raise ConfigurationError listing every problem found in ``config``."""
    errors: list[str] = []

    try:
        url = httpx.URL(config.base_url)
        if url.scheme not in ("http", "https") or not url.host:
            errors.append(f"base_url must be an absolute http(s) URL, got {config.base_url!r}")
    except (httpx.InvalidURL, TypeError):
        errors.append(f"base_url is malformed: {config.base_url!r}")

    if not config.model:
        errors.append("model is required")
    if not 0.0 <= config.temperature <= 1.0:
        errors.append("temperature must be between 0 and 1")
    if config.top_p is not None and not 0.0 <= config.top_p <= 1.0:
        errors.append("top_p must be between 0 and 1")
    if config.top_k is not None and config.top_k < 1:
        errors.append("top_k must be positive")

    for name in ("max_tokens", "batch_size", "max_concurrent"):
        if getattr(config, name) < 1:
            errors.append(f"{name} must be positive")
    for name in ("max_retries", "retry_delay_ms", "timeout_ms"):
        if getattr(config, name) < 0:
            errors.append(f"{name} must not be negative")
    if config.max_retry_delay_ms is not None and config.max_retry_delay_ms < config.retry_delay_ms:
        errors.append("max_retry_delay_ms must not be lower than retry_delay_ms")

    if config.rate_limit.max_tokens_per_minute < 1:
        errors.append("rate_limit.max_tokens_per_minute must be positive")
    if config.rate_limit.refill_interval_ms < 1:
        errors.append("rate_limit.refill_interval_ms must be positive")

    breaker = config.circuit_breaker
    if breaker.failure_threshold < 1:
        errors.append("circuit_breaker.failure_threshold must be positive")
    if breaker.reset_timeout_ms < 0 or breaker.half_open_timeout_ms < 0:
        errors.append("circuit_breaker timeouts must not be negative")

    if config.function_call is not None:
        names = {fn.name for fn in config.functions or []}
        if config.function_call.name not in names:
            errors.append(f"function_call names unknown function {config.function_call.name!r}")

    if errors:
        raise ConfigurationError("Configuration errors:\n  - " + "\n  - ".join(errors))


def sanitize_config(config: ClientConfig) -> dict[str, Any]:
    """Plain-dict copy of ``config`` without secrets or absent fields."""
    result: dict[str, Any] = {}
    for f in dataclasses.fields(config):
        if f.name in _SECRET_FIELDS:
            continue
        value = getattr(config, f.name)
        if value is None:
            continue
        if dataclasses.is_dataclass(value):
            value = dataclasses.asdict(value)
        elif isinstance(value, list):
            value = [dataclasses.asdict(v) if dataclasses.is_dataclass(v) else v for v in value]
        elif isinstance(value, dict):
            value = dict(value)
        result[f.name] = value
    return result


def requires_transport_rebuild(old: ClientConfig, new: ClientConfig) -> bool:
    """Whether switching from ``old`` to ``new`` invalidates the transport."""
    changed = [name for name in TRANSPORT_FIELDS if getattr(old, name) != getattr(new, name)]
    if changed:
        logger.debug("Transport identity changed: %s", ", ".join(changed))
    return bool(changed)
