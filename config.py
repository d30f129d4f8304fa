"""
Centralized configuration using Pydantic BaseSettings.
All environment variables are optional to prevent application startup failure.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Branding and legal pages
    app_name: str = Field(default="My App", alias="APP_NAME")
    app_url: str = Field(default="http://localhost:3000", alias="APP_URL")
    company_name: str = Field(default="Your Company", alias="COMPANY_NAME")
    support_email: str = Field(default="support@example.com", alias="SUPPORT_EMAIL")
    company_website: str = Field(default="https://example.com", alias="COMPANY_WEBSITE")
    terms_of_service_last_updated: str = Field(default="January 1, 2026", alias="TERMS_OF_SERVICE_LAST_UPDATED")
    privacy_policy_last_updated: str = Field(default="January 1, 2026", alias="PRIVACY_POLICY_LAST_UPDATED")

    # Authentication
    auth_secret: Optional[str] = Field(default=None, alias="AUTH_SECRET")
    auth_url: Optional[str] = Field(default=None, alias="AUTH_URL")
    google_client_id: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_SECRET")

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_publishable_key: Optional[str] = Field(default=None, alias="STRIPE_PUBLISHABLE_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")
    database_ssl: Optional[str] = Field(default=None, alias="DATABASE_SSL")
    database_max_connections: Optional[int] = Field(default=None, alias="DATABASE_MAX_CONNECTIONS")
    database_prepare: Optional[str] = Field(default=None, alias="DATABASE_PREPARE")
    database_secondary_url: Optional[str] = Field(default=None, alias="DATABASE_SECONDARY_URL")
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    rate_limit_per_minute: int = Field(default=60, alias="RATE_LIMIT_PER_MINUTE")

    # Deployment
    env: Optional[str] = Field(default=None, alias="ENV")
    render: Optional[str] = Field(default=None, alias="RENDER")

    @property
    def auth_base_url(self) -> str:
        """Base URL the OAuth provider redirects back to."""
        return (self.auth_url or self.app_url).rstrip("/")

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or (settings.env is not None and settings.env.lower() == "production")
