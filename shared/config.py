"""
Shared configuration management for the Museum Access Layer.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="MUSEUM_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Upstream collection API
    met_api_base_url: str = Field(default="https://collectionapi.metmuseum.org")
    upstream_timeout_seconds: float = Field(default=15.0, gt=0)
    upstream_accept: str = Field(default="application/json")
    upstream_user_agent: str = Field(default="Met-Museum-Backend/1.0.0")
    upstream_verify_tls: bool = Field(default=True)

    # Cache
    cache_ttl_seconds: float = Field(default=3600.0, gt=0)
    cache_check_period_seconds: float = Field(default=600.0, gt=0)

    # Dispatch scheduler
    scheduler_concurrency: int = Field(default=3, ge=1)
    scheduler_interval_cap: int = Field(default=10, ge=1)
    scheduler_interval_seconds: float = Field(default=2.0, gt=0)
    scheduler_timeout_seconds: float = Field(default=30.0, gt=0)

    # Retry policy
    retry_forbidden_max_attempts: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=2.0, ge=0)
    retry_jitter_seconds: float = Field(default=1.0, ge=0)
    retry_network_max_attempts: int = Field(default=1, ge=0)
    retry_network_delay_seconds: float = Field(default=0.5, ge=0)

    # Mediation
    coalesce_requests: bool = Field(default=False)

    # Route defaults
    default_image_query: str = Field(default="painting")
    department_search_query: str = Field(default="portrait")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = 3001
    host: str = "0.0.0.0"


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
