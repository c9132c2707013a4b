"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Upstream insights service
    insights_base_url: str = Field(
        default="http://localhost:9000/v1", description="Insights service base URL"
    )
    insights_api_token: str = Field(default="", description="Insights service bearer token")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable hot reload")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Engine Configuration
    chunk_max_days: int = Field(
        default=90, ge=1, description="Max days per chunk when no policy is supplied"
    )
    fetch_max_concurrency: int = Field(
        default=5, ge=1, le=50, description="Simultaneous in-flight chunk fetches"
    )
    fetch_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout for a single chunk fetch attempt"
    )
    fetch_max_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts per chunk for transient failures"
    )
    fetch_backoff_base_seconds: float = Field(
        default=1.0, ge=0.0, description="Exponential backoff base between attempts"
    )
    reach_policy: str = Field(
        default="sum", description="Cross-chunk reach combination (sum|max)"
    )

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("cors_origins")
    @classmethod
    def parse_cors_origins(cls, v: str) -> List[str]:
        """Parse comma-separated CORS origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("reach_policy")
    @classmethod
    def validate_reach_policy(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("sum", "max"):
            raise ValueError("reach_policy must be 'sum' or 'max'")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
