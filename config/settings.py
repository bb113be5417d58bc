"""
Configuration settings for the entitlement service
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Entitlement sources
SOURCE_SUBSCRIPTION = "subscription"
SOURCE_TRIAL = "trial"
SOURCE_NONE = "none"

# DualStore read sources (where read_through found a record)
READ_SOURCE_REMOTE = "remote"
READ_SOURCE_CACHE = "cache"
READ_SOURCE_NONE = "none"

# Subscription statuses
STATUS_ACTIVE = "active"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")
    cache_ttl_seconds: Optional[int] = Field(default=None, alias="CACHE_TTL_SECONDS")

    # Trial configuration
    trial_duration_days: int = Field(default=7, alias="TRIAL_DURATION_DAYS")
    trial_timezone: str = Field(default="UTC", alias="TRIAL_TIMEZONE")
    # Unknown signup date counts as eligible (see DESIGN.md, open question 2)
    trial_eligible_without_signup_date: bool = Field(default=True, alias="TRIAL_ELIGIBLE_WITHOUT_SIGNUP_DATE")

    # Subscription configuration
    billing_period_days: int = Field(default=30, alias="BILLING_PERIOD_DAYS")
    default_plan_name: str = Field(default="Monthly Membership", alias="DEFAULT_PLAN_NAME")
    default_currency: str = Field(default="NGN", alias="DEFAULT_CURRENCY")

    # Admin endpoints (trial extend / terminate)
    admin_api_key: Optional[str] = Field(default=None, alias="ADMIN_API_KEY")

    # Stripe payment callbacks
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Render.com deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or bool(settings.env and settings.env.lower() == "production")
