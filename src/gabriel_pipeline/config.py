from __future__ import annotations

import os

from pydantic import BaseModel, Field

# Used when neither OPENAI_ASSISTANT_ID nor ASSISTANT_ID is set.
DEFAULT_ASSISTANT_ID = "asst_BpFiJmyhoHFYUj5ooLEoHEX2"

OPENAI_API_BASE = "https://api.openai.com/v1"


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


class PipelineConfig(BaseModel):
    # Provider access
    openai_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_base_url: str = Field(default_factory=lambda: os.getenv("OPENAI_BASE_URL", OPENAI_API_BASE))
    assistant_id: str = Field(
        default_factory=lambda: os.getenv("OPENAI_ASSISTANT_ID") or os.getenv("ASSISTANT_ID") or DEFAULT_ASSISTANT_ID
    )

    # Routing
    force_primary: bool = Field(default_factory=lambda: _env_flag("FORCE_OPENAI_ASSISTANT"))
    force_secondary: bool = Field(default_factory=lambda: _env_flag("FORCE_OPENAI_FALLBACK"))
    environment: str = Field(
        default_factory=lambda: (os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "development").lower()
    )
    secondary_default_environments: list[str] = Field(
        default_factory=lambda: [e.lower() for e in _parse_csv(os.getenv("SECONDARY_DEFAULT_ENVIRONMENTS"))]
    )

    # Secondary (single-shot) provider
    secondary_model: str = Field(default_factory=lambda: os.getenv("SECONDARY_MODEL", "gpt-4o"))
    secondary_temperature: float = Field(
        default_factory=lambda: float(os.getenv("SECONDARY_TEMPERATURE", "0.7"))
    )
    secondary_max_tokens: int = Field(default_factory=lambda: int(os.getenv("SECONDARY_MAX_TOKENS", "1000")))
    secondary_history_limit: int = Field(
        default_factory=lambda: int(os.getenv("SECONDARY_HISTORY_LIMIT", "10"))
    )

    # Run polling
    run_poll_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("RUN_POLL_INTERVAL_SECONDS", "1.0"))
    )
    run_poll_max_attempts: int = Field(default_factory=lambda: int(os.getenv("RUN_POLL_MAX_ATTEMPTS", "120")))
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT_SECONDS", "150"))
    )

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # HTTP behavior
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "120"))
    )
    upstream_max_attempts: int = Field(default_factory=lambda: int(os.getenv("UPSTREAM_MAX_ATTEMPTS", "3")))
    upstream_backoff_initial_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_BACKOFF_INITIAL_SECONDS", "0.5"))
    )
    upstream_backoff_max_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_BACKOFF_MAX_SECONDS", "8.0"))
    )
    upstream_circuit_breaker_failures: int = Field(
        default_factory=lambda: int(os.getenv("UPSTREAM_CIRCUIT_BREAKER_FAILURES", "5"))
    )
    upstream_circuit_breaker_reset_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_CIRCUIT_BREAKER_RESET_SECONDS", "30"))
    )
