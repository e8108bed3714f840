"""
Shared configuration management for the Directory service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="DIRECTORY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment")
    log_level: str = Field(default="info", description="Root log level")

    # PostgreSQL
    postgres_dsn: str = Field(default="postgres://localhost:5432/directory")
    postgres_min_pool: int = Field(default=2, ge=1)
    postgres_max_pool: int = Field(default=10, ge=1)
    postgres_command_timeout: float = Field(default=30.0, gt=0)

    # Authorization policies; unset means the policies shipped with the service
    policy_dir: Optional[str] = Field(default=None)

    # Observability
    enable_metrics: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = 8080
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service.

    ``DIRECTORY_PORT`` and ``DIRECTORY_HOST`` take precedence over the
    defaults passed in by the service.
    """
    config = ServiceConfig(service_name=service_name)
    if "port" not in config.model_fields_set:
        config.port = port
    return config
