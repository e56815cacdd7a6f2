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


def _split_csv(raw: str) -> list[str]:
    """Split a comma-separated setting into unique, non-empty entries."""
    values: list[str] = []
    for item in raw.split(","):
        item = item.strip()
        if item and item not in values:
            values.append(item)
    return values


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Entitlements API"
    api_version: str = "0.1.0"
    api_description: str = "Subscription entitlement reconciliation for Google Play"

    # Caller Authentication - Google ID tokens
    GOOGLE_CLIENT_ID: str = ""  # Google OAuth client ID (web client)
    GOOGLE_CLIENT_IDS: str = ""  # Comma-separated list of valid client IDs (web + Android)

    @property
    def valid_google_client_ids(self) -> list[str]:
        """Get list of valid Google client IDs for token validation."""
        ids = []
        if self.GOOGLE_CLIENT_ID:
            ids.append(self.GOOGLE_CLIENT_ID)
        for cid in _split_csv(self.GOOGLE_CLIENT_IDS):
            if cid not in ids:
                ids.append(cid)
        return ids

    # Google Play Developer API
    # Path to service account JSON file, or the raw JSON document itself
    google_play_service_account_json: str = ""
    default_package_name: str = "com.mystictarot.app"

    # Subscription products accepted by verify/restore (comma-separated)
    allowed_product_ids: str = "premium_monthly_v1,premium_yearly_v1"

    @property
    def allowed_products(self) -> list[str]:
        """Get the product allow-list."""
        return _split_csv(self.allowed_product_ids)

    # Real-Time Developer Notifications (Pub/Sub push)
    # Shared secret expected in the push endpoint's ?token= query parameter
    rtdn_push_token: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "entitlements-api"
    environment: str = "production"

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

        if not self.allowed_products:
            errors.append("ALLOWED_PRODUCT_IDS must list at least one product")

        if not self.default_package_name:
            errors.append("DEFAULT_PACKAGE_NAME is required but empty")

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
