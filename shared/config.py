"""
Shared configuration management for the School API services.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="SCHOOL_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Redis cache. Leaving both url and host unset disables caching.
    redis_url: Optional[str] = Field(default=None)
    redis_host: Optional[str] = Field(default=None)
    redis_port: int = Field(default=6379)
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0)
    redis_connect_timeout: float = Field(default=5.0, gt=0)
    redis_socket_timeout: float = Field(default=5.0, gt=0)

    # Response cache
    cache_default_ttl: int = Field(default=300, gt=0)
    cache_key_prefix: str = Field(default="api")
    cache_scan_batch_size: int = Field(default=100, gt=0)

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True)

    @property
    def cache_configured(self) -> bool:
        """Whether any Redis connection setting is present."""
        return bool(self.redis_url or self.redis_host)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
