"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings

# ===========================================
# Product Branding
# ===========================================
PRODUCT_NAME = "Broker Link"
PRODUCT_TAGLINE = "Connect your Zerodha account once, trade from the portal."
PRODUCT_VERSION = "1.0.0"
PRODUCT_DESCRIPTION = "Broker credential and session lifecycle for the trading portal."


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./broker_link.db"

    # Logging
    log_level: str = "INFO"

    # Default user (for CLI commands run without --user)
    default_user_email: str = "user@localhost"

    # API Security
    api_key: str = ""  # JWT signing secret, set in .env for production
    session_cookie_name: str = "access_token"

    # API server
    host: str = "0.0.0.0"
    port: int = Field(8000, ge=1, le=65535)

    # Public URL of the portal, used for the OAuth redirect and settings page
    app_base_url: str = "http://localhost:8000"

    # Zerodha Kite Connect
    kite_api_url: str = "https://api.kite.trade"
    kite_login_url: str = "https://kite.zerodha.com/connect/login"
    broker_timeout_seconds: float = 10.0

    # Comma-separated sealing keys; the first one seals, all of them open
    credential_keys: str = "dev-credential-key-change-in-production"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def callback_url(self) -> str:
        """Redirect URI registered with the broker app."""
        return self.app_base_url.rstrip("/") + "/api/zerodha/callback"

    @property
    def credential_key_list(self) -> List[str]:
        return [k.strip() for k in self.credential_keys.split(",") if k.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
