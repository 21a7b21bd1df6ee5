"""
Configuration for the application
"""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings
    """

    database_url: str  # PostgreSQL connection (asyncpg format)
    redis_url: str = ""
    frontend_url: str = "http://localhost:5173"
    site_url: str = "http://localhost:5173"  # Base for accept-invitation links
    log_level: str = "INFO"
    allowed_origins: List[str] = ["http://localhost:8080", "http://localhost:5173"]

    # Supabase (identity store + JWT issuer)
    supabase_url: str = ""
    supabase_service_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"

    # Bypass bearer verification for local testing
    auth_disabled: bool = False
    auth_disabled_user_id: str = "00000000-0000-0000-0000-000000000000"

    # Invitation lifecycle
    invitation_expiry_days: int = 7

    # Notification hand-off (outbound email lives behind this webhook)
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 10.0

    # Rate limiting (Redis backed, fails open)
    rate_limit_enabled: bool = True

    class Config:
        """
        Configuration for the application settings
        """
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings with caching.

    Returns:
        Settings: The application configuration settings.
    """
    return Settings()
