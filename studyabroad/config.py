"""
Application Configuration - Pydantic Settings for type-safe config.

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
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Study Abroad Platform API"
    api_version: str = "1.0.0"
    api_description: str = "Student accounts, service purchases and Stripe payments"
    cors_origins: str = "*"  # Comma-separated

    # User Authentication
    jwt_secret: str = ""  # generate with: openssl rand -hex 32
    jwt_refresh_secret: str = ""  # Falls back to jwt_secret
    access_token_expire_days: int = 7
    refresh_token_expire_days: int = 30
    require_email_verification: bool = True
    verification_token_hours: int = 24
    password_reset_token_minutes: int = 60

    # Admin Authentication - email OTP
    admin_emails: str = ""  # Comma-separated allow-list
    admin_token_expire_days: int = 30
    otp_expiry_minutes: int = 10
    otp_max_attempts: int = 3
    otp_rate_limit_window_minutes: int = 15
    otp_rate_limit_max_requests: int = 3
    rate_limiter_backend: str = "memory"  # memory or database

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)
    stripe_success_url: str = "http://localhost:3000/payment/success"
    stripe_cancel_url: str = "http://localhost:3000/payment/cancel"
    stripe_timeout_seconds: float = 10.0

    # Email (SMTP)
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 15.0
    email_from: str = "no-reply@localhost"
    admin_notification_email: str = ""
    frontend_url: str = "http://localhost:3000"

    # Maintenance
    session_retention_days: int = 30
    otp_retention_days: int = 7

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "studyabroad-api"

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
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.jwt_secret:
            errors.append("JWT_SECRET is required but empty or missing")

        if self.rate_limiter_backend not in ("memory", "database"):
            errors.append(
                f"RATE_LIMITER_BACKEND must be 'memory' or 'database', got: {self.rate_limiter_backend}"
            )

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

    @property
    def refresh_secret(self) -> str:
        """Secret used to sign refresh tokens."""
        return self.jwt_refresh_secret or self.jwt_secret

    @property
    def admin_email_list(self) -> list[str]:
        """Normalized admin allow-list."""
        emails = []
        for email in self.admin_emails.split(","):
            email = email.strip().lower()
            if email and email not in emails:
                emails.append(email)
        return emails

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
