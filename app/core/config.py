"""
app/core/config.py

Purpose: Application configuration

- Loads environment variables
- Centralizes config values (DB URI, provider keys, limits)
- Validates configuration on startup
- Environment-specific settings
"""

from pydantic import Field, validator
from pydantic_settings import BaseSettings
from typing import Optional, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Validates all required configs on startup.
    """

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # MongoDB
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI"
    )
    MONGODB_DB_NAME: str = Field(
        default="ledgerchat",
        description="MongoDB database name"
    )
    MONGODB_USE_TRANSACTIONS: bool = Field(
        default=False,
        description="Wrap task writes in multi-document transactions (replica set required)"
    )

    # Redis
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used for rate-limit counters"
    )

    # WhatsApp Cloud API
    WHATSAPP_TOKEN: Optional[str] = Field(
        default=None,
        description="WhatsApp Cloud API access token"
    )
    WHATSAPP_PHONE_NUMBER_ID: Optional[str] = Field(
        default=None,
        description="Sending phone number id"
    )
    WHATSAPP_VERIFY_TOKEN: str = Field(
        default="change-me",
        description="Token echoed back during webhook verification"
    )
    WHATSAPP_APP_SECRET: Optional[str] = Field(
        default=None,
        description="App secret for X-Hub-Signature-256 verification (optional)"
    )
    WHATSAPP_API_URL: str = Field(
        default="https://graph.facebook.com/v19.0",
        description="Graph API base URL"
    )

    # AI providers
    DEEPSEEK_API_KEY: Optional[str] = Field(
        default=None,
        description="Primary chat-completion provider key"
    )
    DEEPSEEK_API_URL: str = Field(
        default="https://api.deepseek.com/chat/completions",
        description="Primary provider endpoint"
    )
    DEEPSEEK_MODEL: str = Field(default="deepseek-chat")
    OPENAI_API_KEY: Optional[str] = Field(
        default=None,
        description="Fallback chat-completion provider key"
    )
    OPENAI_API_URL: str = Field(
        default="https://api.openai.com/v1/chat/completions",
        description="Fallback provider endpoint"
    )
    OPENAI_MODEL: str = Field(default="gpt-3.5-turbo-0125")
    AI_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Per-request timeout for AI providers"
    )

    # Paystack
    PAYSTACK_SECRET_KEY: Optional[str] = Field(
        default=None,
        description="Paystack secret key (also the webhook HMAC key)"
    )
    PAYSTACK_BASE_URL: str = Field(default="https://api.paystack.co")
    PLAN_PRICE_NGN: float = Field(default=7500, description="Monthly plan price in NGN")
    PLAN_PRICE_USD: float = Field(default=5, description="Monthly plan price in USD")
    SUBSCRIPTION_PERIOD_DAYS: int = Field(default=30)
    TRIAL_PERIOD_DAYS: int = Field(default=14)

    # Email (Brevo)
    BREVO_API_KEY: Optional[str] = Field(
        default=None,
        description="Transactional email key; OTPs are only logged when unset"
    )
    EMAIL_SENDER: str = Field(default="no-reply@ledgerchat.app")
    EMAIL_SENDER_NAME: str = Field(default="LedgerChat")
    OTP_EXPIRY_MINUTES: int = Field(default=10)

    # Conversation
    FLOW_TIMEOUT_MINUTES: int = Field(
        default=30,
        description="Collecting/awaiting flows older than this are reset to IDLE"
    )
    MEMORY_MAX_TURNS: int = Field(
        default=12,
        description="Slot-filling memory bound"
    )

    # Rate Limiting
    RATE_LIMIT_MESSAGES: int = Field(
        default=20,
        description="Maximum messages per user per window"
    )
    RATE_LIMIT_WINDOW_SECONDS: int = Field(
        default=60,
        description="Rate limit window length"
    )

    # Inbound queue
    QUEUE_MAX_CONCURRENCY: int = Field(
        default=50,
        description="Maximum users processed concurrently"
    )
    QUEUE_IDLE_SECONDS: float = Field(
        default=30.0,
        description="Idle per-user workers exit after this many seconds"
    )

    # Application
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    API_PREFIX: str = Field(
        default="/api/v1",
        description="API route prefix"
    )

    @validator("WHATSAPP_TOKEN")
    def validate_whatsapp_token(cls, v, values):
        """Ensure the channel token is set in production."""
        if values.get("ENVIRONMENT") == "production" and not v:
            raise ValueError("WHATSAPP_TOKEN is required in production environment")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def validate_settings():
    """
    Validates critical settings on application startup.
    Raises ValueError if any required setting is missing or invalid.
    """
    errors = []

    if not settings.MONGODB_URL:
        errors.append("MONGODB_URL is required")

    if settings.RATE_LIMIT_MESSAGES < 1:
        errors.append("RATE_LIMIT_MESSAGES must be at least 1")

    # Production-specific validations
    if settings.is_production:
        if not settings.WHATSAPP_PHONE_NUMBER_ID:
            errors.append("WHATSAPP_PHONE_NUMBER_ID is required in production")
        if not settings.PAYSTACK_SECRET_KEY:
            errors.append("PAYSTACK_SECRET_KEY is required in production")
        if settings.WHATSAPP_VERIFY_TOKEN == "change-me":
            errors.append("WHATSAPP_VERIFY_TOKEN must be changed in production")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
