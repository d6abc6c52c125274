"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "IELTS Lover Credits API"
    api_version: str = "0.1.0"
    api_description: str = "Credit economy and attempt lifecycle engine"

    # Identity - header set by the upstream auth gateway after session validation
    auth_user_header: str = "X-User-Id"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "ielts-lover-credits"

    # Support correlation ids attached to internal-error responses
    trace_id_prefix: str = "ERR"
    trace_id_length: int = 6

    # Ledger
    ledger_max_retries: int = 5

    # Credit policy
    refund_on_ai_failure: bool = True
    daily_grant_free: int = 5
    daily_grant_premium: int = 20
    daily_grant_interval_hours: int = 24
    welcome_bonus: int = 10
    invite_friend_bonus: int = 10
    gift_code_default: int = 20

    # AI collaborator
    ai_service_url: str = "http://ai-service:8080"
    ai_service_api_key: str = ""
    ai_timeout_seconds: float = 60.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres", "sqlite")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
            )

        if self.trace_id_length < 4:
            errors.append(f"TRACE_ID_LENGTH must be at least 4, got: {self.trace_id_length}")

        if self.ledger_max_retries < 1:
            errors.append(f"LEDGER_MAX_RETRIES must be positive, got: {self.ledger_max_retries}")

        for name in ("daily_grant_free", "daily_grant_premium", "welcome_bonus"):
            if getattr(self, name) < 0:
                errors.append(f"{name.upper()} cannot be negative")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
