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
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    auto_migrate: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Dating Messaging API"
    api_version: str = "0.1.0"
    api_description: str = "Conversations, chat requests, blocking and credits"

    # Authentication - tokens are issued by the account service, verified here
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "dating-messaging-api"

    # Chat requests
    chat_request_ttl_days: int = 30
    pending_requests_limit: int = 50
    intro_max_receivers: int = 10

    # Expiry sweep (pending chat requests past expires_at -> expired)
    expiry_sweep_enabled: bool = True
    expiry_sweep_interval_seconds: int = 3600

    # VIP eligibility
    vip_window_days: int = 30
    vip_credits_required: int = 160

    # Credit costs (defaults; CRM overrides live in system_settings)
    chat_message_cost: int = 0
    voice_call_per_minute: int = 0
    video_call_per_minute: int = 0
    photo_view_credits: int = 15
    video_view_credits: int = 15
    voice_message_credits: int = 10

    # Credit history
    history_page_size: int = 50

    # Notifications - webhook fan-out target, log-only when empty
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

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

        if len(self.jwt_secret) < 32:
            errors.append("JWT_SECRET is required and must be at least 32 characters")

        if self.chat_request_ttl_days <= 0:
            errors.append("CHAT_REQUEST_TTL_DAYS must be positive")

        if self.vip_window_days <= 0:
            errors.append("VIP_WINDOW_DAYS must be positive")

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

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
