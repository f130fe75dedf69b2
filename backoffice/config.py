"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from decimal import Decimal

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
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Coaching Back-Office API"
    api_version: str = "0.1.0"
    api_description: str = "Invoices, payments, audit and analytics for the coaching site"
    cors_origins: str = "*"  # Comma-separated list

    # Public site URL (links in emails, checkout redirects)
    app_url: str = "http://localhost:3000"

    # Identity provider (OAuth2 authorization-code flow)
    identity_provider_issuer: str = ""  # e.g. https://yourbusiness.kinde.com
    identity_provider_client_id: str = ""
    identity_provider_client_secret: str = ""
    identity_provider_timeout: float = 10.0

    # Sessions - generate with: openssl rand -hex 32
    session_jwt_secret: str = ""
    session_expire_hours: int = 24
    session_cookie_name: str = "auth_token"
    refresh_cookie_name: str = "refresh_token"
    session_cookie_secure: bool = True

    # Comma-separated emails that receive the admin role on first sign-in
    admin_emails: str = ""

    # Token lifetimes
    password_reset_ttl_minutes: int = 60
    email_verification_ttl_hours: int = 24

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "coaching-backoffice-api"
    deployment_environment: str = "production"

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_publishable_key: str = ""

    # Email - SMTP
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_secure: bool = False  # True = implicit TLS (port 465), False = STARTTLS
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_from: str = ""
    smtp_timeout: float = 30.0
    business_name: str = "Payne Leadership"
    admin_notification_email: str = ""

    # Invoicing
    invoice_tax_rate: Decimal = Decimal("8")  # percent
    invoice_due_days: int = 30
    invoice_currency: str = "USD"
    invoice_terms: str = "Payment is due within 30 days of invoice date."

    # Pending payments
    pending_payment_expiry_days: int = 30

    # Audit log retention
    audit_retention_days: int = 365

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

        if len(self.session_jwt_secret) < 32:
            errors.append("SESSION_JWT_SECRET must be at least 32 characters")

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
    def admin_email_list(self) -> list[str]:
        """Lower-cased admin emails from the comma-separated setting."""
        emails = []
        for email in self.admin_emails.split(","):
            email = email.strip().lower()
            if email and email not in emails:
                emails.append(email)
        return emails

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def mail_sender(self) -> str:
        return self.smtp_from or self.smtp_user


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
