"""
Configuration settings for the application.
Loads environment variables and provides typed settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Wallet Tracker"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql://financeuser:financepass@db:5432/financedb"
    SQL_ECHO: bool = False

    # Identity provider tokens
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True

    # Listing
    DEFAULT_TRANSACTION_LIMIT: int = 50

    # CORS (Cross-Origin Resource Sharing)
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:19006",
        "http://localhost:8081"
    ]

    class Config:
        """Pydantic config to load from .env file."""
        env_file = ".env"
        case_sensitive = True


# Create global settings instance
settings = Settings()
