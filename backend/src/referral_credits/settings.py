"""Application settings and configuration."""

import sys

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your-secret-key"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "referral-credits"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "http://localhost:3000"
    public_base_url: str = "http://localhost:3000"

    # JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 2

    # Database
    database_url: str = "sqlite:///./referral_credits.db"
    store_timeout_seconds: float = 10.0

    # Referral program
    referral_reward_credits: int = 2  # Awarded to both referrer and referred on conversion
    code_length: int = 8
    code_generation_max_attempts: int = 10

    # Purchases
    purchase_max_amount: float = 1_000_000.0
    conversion_retry_attempts: int = 3

    # Webhooks (HMAC-SHA256 of the raw body, hex, in X-Webhook-Signature)
    webhook_secret: str = ""


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
