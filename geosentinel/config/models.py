"""
Pydantic models for engine configuration.

This module defines the configuration models validated when loading
config/settings.yaml. Every model is frozen; defaults are chosen so that
an empty section yields a working engine.

Configuration sections:
    - layer_provider: Feature store catalog/collection endpoints and readiness
    - engine: Monitor engine limits and defaults
    - actions: Outbound action channel HTTP settings
    - logging: Log format and level

Example:
    >>> from geosentinel.config.models import AppConfig
    >>> config = AppConfig(layer_provider=LayerProviderConfig())
    >>> config.engine.max_event_services
    64
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator

from geosentinel.models.monitor import ChangeEventName


# =============================================================================
# ENUMS
# =============================================================================


class LogFormat(str, Enum):
    """Logging format options."""

    JSON = "json"
    TEXT = "text"


class LogLevel(str, Enum):
    """Logging level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# SECTIONS
# =============================================================================


class LayerProviderConfig(BaseModel):
    """Feature store (layer provider) connection settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    base_url: str = Field(
        default="http://localhost:8081",
        description="Feature store base URL",
    )
    api_path: str = Field(
        default="/api",
        description="API prefix for catalog and collection endpoints",
    )
    ready_poll_seconds: float = Field(
        default=2.0,
        description="Interval between readiness probes at startup",
        gt=0,
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single feature store request",
        gt=0,
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL."""
        return v.rstrip("/")


class EngineConfig(BaseModel):
    """Monitor engine settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    default_cooldown_seconds: float = Field(
        default=60.0,
        description="Cooldown applied when an action omits cooldown_seconds",
        ge=0,
    )
    max_event_services: int = Field(
        default=64,
        description="Maximum distinct services with change subscriptions",
        ge=1,
    )
    allowed_events: List[ChangeEventName] = Field(
        default_factory=lambda: list(ChangeEventName),
        description="Change events subscribed per backing service",
        min_length=1,
    )


class ActionsConfig(BaseModel):
    """Outbound action channel settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    timeout_seconds: float = Field(
        default=10.0,
        description="Total timeout for one action request",
        gt=0,
    )
    user_agent: str = Field(
        default="GeoSentinel/0.1",
        description="User-Agent header sent by action channels",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    format: LogFormat = Field(
        default=LogFormat.JSON,
        description="Log output format",
    )
    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Default log level",
    )


class RedisConnectionConfig(BaseModel):
    """Redis connection configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL",
    )
    max_connections: int = Field(
        default=10,
        description="Maximum connection pool size",
        ge=1,
    )
    socket_timeout: int = Field(
        default=5,
        description="Socket timeout in seconds",
        ge=1,
    )


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================


class AppConfig(BaseModel):
    """
    Root application configuration.

    Aggregates all configuration sections into a single validated object.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    layer_provider: LayerProviderConfig = Field(
        default_factory=LayerProviderConfig,
        description="Layer provider settings",
    )
    engine: EngineConfig = Field(
        default_factory=EngineConfig,
        description="Engine settings",
    )
    actions: ActionsConfig = Field(
        default_factory=ActionsConfig,
        description="Action channel settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    redis: RedisConnectionConfig = Field(
        default_factory=RedisConnectionConfig,
        description="Redis connection config",
    )
