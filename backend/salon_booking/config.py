"""
Application configuration
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = "sqlite:///./salon.db"

    # Telegram (salon owner / developer channels)
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_ADMIN_CHAT_ID: Optional[str] = None
    TELEGRAM_DEV_CHAT_ID: Optional[str] = None

    # Email (client notifications)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_NAME: str = "Massage Salon"
    SMTP_FROM_EMAIL: Optional[str] = None  # falls back to SMTP_USER

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_CONNECT_ACCOUNT_ID: Optional[str] = None  # salon's connected account, if any
    STRIPE_CURRENCY: str = "eur"
    WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Application
    SITE_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"

    # Booking
    SLOT_DURATION_MINUTES: int = 30
    # deferred: booking is inserted by the payment webhook
    # direct: booking is inserted immediately (PENDING_PAYMENT when a deposit is due)
    BOOKING_FLOW: Literal["deferred", "direct"] = "deferred"
    SLOT_HOLD_ENABLED: bool = False
    CHECKOUT_SESSION_TTL_MINUTES: int = 30
    PENDING_PAYMENT_TTL_MINUTES: int = 60

    # Development
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        # .env relative to the project root
        env_file=Path(__file__).resolve().parent.parent.parent / ".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)"""
    return Settings()
