"""
Shared configuration management for the Media Gate access layer.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External stores
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/media")
    store_timeout_seconds: float = Field(default=2.0, gt=0)

    # Upload quotas
    quota_fail_open: bool = Field(default=True)
    quota_window_seconds: int = Field(default=86400, gt=0)
    upload_limit_standard: int = Field(default=10, ge=0)
    upload_limit_elevated: int = Field(default=50, ge=0)

    # Response cache
    cache_default_ttl_seconds: int = Field(default=300, gt=0)

    # Signed delivery URLs
    secure_link_secret: str = Field(default="change-me-secret")
    hls_token_ttl_seconds: int = Field(default=3600, gt=0)
    media_path_prefix: str = Field(default="/media/hls")

    # Preview links
    preview_sweep_interval_seconds: int = Field(default=3600, gt=0)
    enable_preview_sweeper: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
