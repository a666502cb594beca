from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Anthropic Messages API
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_timeout_ms: int = 30_000

    # User-editable LLM tuning (model, batching, retry, rate limit, circuit breaker)
    llm_config_file: str = "budgeting-toolkit.config.yaml"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True for structured JSON logs


settings = Settings()


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """Load the YAML config file. A missing file yields an empty dict."""
    path = Path(config_path)
    if not path.exists():
        return {}
    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
