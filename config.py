"""
Configuration

Environment-driven settings for the rental booking API.
"""
import logging
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("configuration")


class Settings(BaseSettings):
    # =========================================================================
    # APPLICATION
    # =========================================================================
    APP_ENV: str = Field(default="development")
    APP_NAME: str = Field(default="Car Rental API")
    PORT: int = Field(default=8000)
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # =========================================================================
    # DATABASE
    # =========================================================================
    DATABASE_URL: Optional[str] = Field(default=None, description="MongoDB connection string")
    DATABASE_NAME: Optional[str] = Field(default=None, description="MongoDB database name")

    # =========================================================================
    # LOGGING
    # =========================================================================
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: Optional[bool] = Field(default=None, description="Defaults to JSON in production")

    # =========================================================================
    # BOOKINGS
    # =========================================================================
    INITIAL_BOOKING_STATUS: Literal["pending", "confirmed", "in_progress"] = Field(default="confirmed")
    STATUS_TRANSITION_POLICY: Literal["permissive", "strict"] = Field(default="permissive")
    PRICE_TABLE: Literal["booking", "quote_form"] = Field(default="booking")
    REFERENCE_PREFIX: str = Field(default="CAR")
    REFERENCE_MAX_ATTEMPTS: int = Field(default=5, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def database_configured(self) -> bool:
        return bool(self.DATABASE_URL and self.DATABASE_NAME)

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError(f"DATABASE_URL must be a mongodb:// or mongodb+srv:// URI: {v}")
        return v

    @field_validator("REFERENCE_PREFIX")
    @classmethod
    def validate_reference_prefix(cls, v: str) -> str:
        if not v.isalnum():
            raise ValueError("REFERENCE_PREFIX must be alphanumeric")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    try:
        return Settings()
    except Exception as e:
        logger.critical(f"Could not load settings: {e}")
        raise
