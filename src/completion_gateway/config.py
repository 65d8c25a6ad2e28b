from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class GatewayConfig(BaseModel):
    # env-derived defaults go through the same bounds as explicit values
    model_config = ConfigDict(validate_default=True)

    # Upstream credential
    groq_api_key: str | None = Field(default_factory=lambda: os.getenv("GROQ_API_KEY"))
    upstream_base_url: str = Field(
        default_factory=lambda: os.getenv("UPSTREAM_BASE_URL", "https://api.groq.com/openai/v1")
    )
    credentials_path: str = Field(default_factory=lambda: os.getenv("CREDENTIALS_PATH", "credentials.enc"))
    fernet_key: str | None = Field(default_factory=lambda: os.getenv("CREDENTIALS_FERNET_KEY"))

    # Dispatch behavior
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")), gt=0
    )
    max_retries: int = Field(default_factory=lambda: int(os.getenv("MAX_RETRIES", "3")), ge=0)
    backoff_base_seconds: float = Field(
        default_factory=lambda: float(os.getenv("BACKOFF_BASE_SECONDS", "1.0")), ge=0
    )
    default_max_tokens: int = Field(default_factory=lambda: int(os.getenv("DEFAULT_MAX_TOKENS", "2048")), gt=0)
    default_temperature: float = Field(
        default_factory=lambda: float(os.getenv("DEFAULT_TEMPERATURE", "0.7")), ge=0, le=2
    )
    default_top_p: float = Field(default_factory=lambda: float(os.getenv("DEFAULT_TOP_P", "1.0")), gt=0, le=1)

    # Provider catalog override (JSON list of descriptors)
    providers_json: str | None = Field(default_factory=lambda: os.getenv("GATEWAY_PROVIDERS_JSON"))

    # Health tracking
    health_check_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HEALTH_CHECK_INTERVAL_SECONDS", "300")), ge=0
    )
    probe_max_retries: int = Field(default_factory=lambda: int(os.getenv("PROBE_MAX_RETRIES", "0")), ge=0)
    probe_max_tokens: int = Field(default_factory=lambda: int(os.getenv("PROBE_MAX_TOKENS", "10")), gt=0)

    # Journal analysis
    low_mood_threshold: int = Field(default_factory=lambda: int(os.getenv("LOW_MOOD_THRESHOLD", "2")), ge=0, le=5)

    # Observability
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))

    # Server limits
    enable_api_docs: bool = Field(default_factory=lambda: _env_bool("ENABLE_API_DOCS"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )
    max_inflight_requests: int = Field(default_factory=lambda: int(os.getenv("MAX_INFLIGHT_REQUESTS", "32")))
    max_messages: int = Field(default_factory=lambda: int(os.getenv("MAX_MESSAGES", "64")))
    max_total_message_chars: int = Field(
        default_factory=lambda: int(os.getenv("MAX_TOTAL_MESSAGE_CHARS", "20000"))
    )

    def secrets(self) -> list[str]:
        return [s for s in (self.groq_api_key, self.fernet_key) if s]
