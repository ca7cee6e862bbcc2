"""
Shared configuration management for the JWKS bearer authentication service.
"""

from typing import Any, Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with a ``JWKS_AUTH_`` prefixed environment
    variable, e.g. ``JWKS_AUTH_LOG_LEVEL=debug``. Complex fields such as
    ``middleware`` are read as JSON.
    """

    model_config = SettingsConfigDict(
        env_prefix="JWKS_AUTH_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # JWKS fetching
    jwks_http_timeout: float = Field(default=30.0, gt=0)
    jwks_min_refresh_interval: float = Field(default=1.0, ge=0)

    # Ordered middleware chain, first entry outermost:
    # [{"type": "bearer-jwks", "config": {"jwks_url": ..., "claims_mapping": {...}}}]
    middleware: List[Dict[str, Any]] = Field(default_factory=list)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides: Any) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
