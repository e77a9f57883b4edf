"""
Call Rescue SMS - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module ensures:
- No hardcoded secrets
- Twilio and cron credentials validated before production start
- Notification policy windows tunable per environment
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (postgresql+asyncpg://...)"
    )
    DATABASE_SSL: bool = Field(
        default=True,
        description="Require SSL for the database connection"
    )

    # ==================== TWILIO ====================
    TWILIO_ACCOUNT_SID: str = Field(default="", description="Twilio Account SID")
    TWILIO_AUTH_TOKEN: str = Field(default="", description="Twilio Auth Token (also signs webhooks)")
    TWILIO_PHONE_NUMBER: str = Field(default="", description="Twilio sender number in E.164")
    TWILIO_VALIDATE_SIGNATURES: bool = Field(
        default=True,
        description="Reject inbound webhooks without a valid X-Twilio-Signature"
    )

    # ==================== INTERNAL AUTH ====================
    CRON_SECRET: str = Field(
        default="",
        description="Bearer secret required by /api/cron/* sweep triggers"
    )
    INTERNAL_API_KEY: str = Field(
        default="",
        description="API key for service-to-service calls (voice backend)"
    )

    # ==================== NOTIFICATIONS ====================
    DEFAULT_TIMEZONE: str = Field(
        default="America/New_York",
        description="Operator timezone used when the user record has none"
    )
    APP_BASE_URL: str = Field(
        default="",
        description="Dashboard URL used in digest deep links"
    )
    DEDUP_WINDOW_MINUTES: int = Field(default=5)
    SIMILARITY_WINDOW_MINUTES: int = Field(default=30)
    SIMILARITY_THRESHOLD: float = Field(default=0.8)
    ESCALATION_AFTER_MINUTES: int = Field(default=120)
    QUEUE_BATCH_SIZE: int = Field(default=50, description="Max queued notifications per sweep")
    RETRY_BATCH_SIZE: int = Field(default=20, description="Max retries per sweep")
    STALE_JOB_HOURS: int = Field(default=24)
    STALE_JOB_BATCH_SIZE: int = Field(default=20)

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Call Rescue SMS API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        if self.is_production:
            if not self.twilio_configured:
                errors.append("TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER are required")

            if not self.CRON_SECRET:
                errors.append("CRON_SECRET is required in production")

            if not self.TWILIO_VALIDATE_SIGNATURES:
                errors.append("TWILIO_VALIDATE_SIGNATURES cannot be disabled in production")

            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    required_vars = [
        ("DATABASE_URL", settings.DATABASE_URL),
    ]

    for name, value in required_vars:
        if not value:
            status["errors"].append(f"{name} is not set")
            status["valid"] = False
        else:
            status["variables"][name] = "✓ Set"

    optional_vars = [
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
        ("TWILIO_AUTH_TOKEN", settings.TWILIO_AUTH_TOKEN, "Outbound SMS and webhook signature validation disabled"),
        ("CRON_SECRET", settings.CRON_SECRET, "Cron endpoints are unauthenticated"),
        ("INTERNAL_API_KEY", settings.INTERNAL_API_KEY, "Internal notification endpoints disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    # DATABASE_URL is already reported above
    errors = [e for e in settings.validate_production_config() if not e.startswith("DATABASE_URL is")]
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
