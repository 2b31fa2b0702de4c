"""
Centralized configuration using Pydantic BaseSettings.
All environment variables are optional to prevent application startup failure.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Normalized plan IDs
PLAN_FREE = "free"
PLAN_PRO = "pro"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Core authentication and security
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")

    # Whop billing configuration
    whop_api_key: Optional[str] = Field(default=None, alias="WHOP_API_KEY")
    whop_api_base_url: str = Field(default="https://api.whop.com/api/v2", alias="WHOP_API_BASE_URL")
    whop_timeout_seconds: float = Field(default=5.0, gt=0, alias="WHOP_TIMEOUT_SECONDS")
    whop_webhook_secret: Optional[str] = Field(default=None, alias="WHOP_WEBHOOK_SECRET")
    whop_webhook_verify: bool = Field(default=True, alias="WHOP_WEBHOOK_VERIFY")
    whop_manage_url: str = Field(default="https://whop.com/hub", alias="WHOP_MANAGE_URL")

    # Fallback billing period length when the provider omits current_period_end
    default_period_days: int = Field(default=30, ge=1, alias="DEFAULT_PERIOD_DAYS")

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:3000", alias="FRONTEND_URL")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
