"""
Configuration and settings for the ReWear backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    cors_origins: list[str] = Field(default=["http://localhost:3000"])

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # S3-compatible object storage for item images
    storage_bucket: str = Field(
        default="rewear_images", env="STORAGE_BUCKET"
    )
    storage_endpoint: Optional[str] = Field(default=None, env="STORAGE_ENDPOINT")
    storage_region: Optional[str] = Field(default=None, env="STORAGE_REGION")
    storage_public_base_url: Optional[str] = Field(
        default=None, env="STORAGE_PUBLIC_BASE_URL"
    )
    storage_cache_control: str = Field(default="3600", env="STORAGE_CACHE_CONTROL")
    max_image_bytes: int = Field(default=5 * 1024 * 1024, env="MAX_IMAGE_BYTES")
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Realtime change feed (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    realtime_channel_prefix: str = Field(
        default="rewear:changes", env="REALTIME_CHANNEL_PREFIX"
    )
    realtime_poll_seconds: float = Field(default=15.0, env="REALTIME_POLL_SECONDS")

    # Auth
    session_ttl_hours: int = Field(default=24 * 7, env="SESSION_TTL_HOURS")
    session_cookie_name: str = Field(default="session_token")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
