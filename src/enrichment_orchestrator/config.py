from __future__ import annotations

import os

from pydantic import BaseModel, Field


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class OrchestratorConfig(BaseModel):
    # Provider credentials
    lovable_api_key: str | None = Field(default_factory=lambda: os.getenv("LOVABLE_API_KEY"))
    openai_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openrouter_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY"))
    ollama_url: str | None = Field(default_factory=lambda: os.getenv("OLLAMA_URL"))
    ollama_api_key: str | None = Field(default_factory=lambda: os.getenv("OLLAMA_API_KEY"))

    # Provider table; order of the csv is priority order, empty keeps the defaults
    enabled_providers: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ENABLED_PROVIDERS")))
    provider_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "60"))
    )
    ollama_timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("OLLAMA_TIMEOUT_SECONDS", "15")))
    default_temperature: float = Field(default_factory=lambda: float(os.getenv("DEFAULT_TEMPERATURE", "0.7")))
    default_max_tokens: int = Field(default_factory=lambda: int(os.getenv("DEFAULT_MAX_TOKENS", "2000")))

    # Backoff retrier
    retry_max_retries: int = Field(default_factory=lambda: int(os.getenv("RETRY_MAX_RETRIES", "3")))
    retry_initial_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("RETRY_INITIAL_DELAY_SECONDS", "1.0"))
    )

    # Repair loop
    repair_excluded_providers: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("REPAIR_EXCLUDED_PROVIDERS", "lovable_ai"))
    )
    repair_temperature: float = Field(default_factory=lambda: float(os.getenv("REPAIR_TEMPERATURE", "0.3")))

    # Cache TTLs (minutes) per integration class
    cache_ttl_minutes: dict[str, int] = Field(
        default_factory=lambda: {
            "catalog": int(os.getenv("CACHE_TTL_CATALOG_MINUTES", "1440")),
            "pricing": int(os.getenv("CACHE_TTL_PRICING_MINUTES", "5")),
        }
    )
    cache_default_ttl_minutes: int = Field(
        default_factory=lambda: int(os.getenv("CACHE_DEFAULT_TTL_MINUTES", "60"))
    )
    completion_cache_ttl_minutes: int = Field(
        default_factory=lambda: int(os.getenv("COMPLETION_CACHE_TTL_MINUTES", "0"))
    )

    # Tool proxy
    rate_limit_default: int = Field(default_factory=lambda: int(os.getenv("RATE_LIMIT_DEFAULT", "60")))
    rate_limit_window_seconds: int = Field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "3600"))
    )
    failure_streak_threshold: int = Field(
        default_factory=lambda: int(os.getenv("FAILURE_STREAK_THRESHOLD", "3"))
    )
    alert_webhook_url: str | None = Field(default_factory=lambda: os.getenv("ALERT_WEBHOOK_URL"))

    # Storage
    redis_url: str | None = Field(default_factory=lambda: os.getenv("REDIS_URL"))

    # Encrypted credentials
    credentials_path: str = Field(default_factory=lambda: os.getenv("CREDENTIALS_PATH", "credentials.enc"))
    fernet_key: str | None = Field(default_factory=lambda: os.getenv("CREDENTIALS_FERNET_KEY"))

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    log_max_value_chars: int = Field(default_factory=lambda: int(os.getenv("LOG_MAX_VALUE_CHARS", "2000")))

    # Optional HTTP surface
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))

    def ttl_for(self, integration_class: str) -> int:
        return self.cache_ttl_minutes.get(integration_class, self.cache_default_ttl_minutes)

    def secrets(self) -> list[str]:
        candidates = (
            self.lovable_api_key,
            self.openai_api_key,
            self.openrouter_api_key,
            self.ollama_api_key,
            self.fernet_key,
            self.server_auth_token,
        )
        return [s for s in candidates if s]

    def require_fernet_key(self) -> str:
        if not self.fernet_key:
            raise ValueError("CREDENTIALS_FERNET_KEY is required for encrypted credential storage.")
        return self.fernet_key
