"""
Configuration management for the monitor engine.

Configuration is loaded from config/settings.yaml and validated with
Pydantic models. Environment variables override connection settings:
    - CONFIG_PATH: Configuration directory
    - REDIS_URL: Redis connection URL
    - LAYER_PROVIDER_URL: Feature store base URL
    - LOG_LEVEL: Application log level

Example:
    >>> from geosentinel.config import load_config
    >>> config = load_config()
    >>> config.actions.timeout_seconds
    10.0
"""

from geosentinel.config.loader import ConfigLoadError, ConfigLoader, load_config
from geosentinel.config.models import (
    ActionsConfig,
    AppConfig,
    EngineConfig,
    LayerProviderConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    RedisConnectionConfig,
)

__all__ = [
    "ConfigLoadError",
    "ConfigLoader",
    "load_config",
    "ActionsConfig",
    "AppConfig",
    "EngineConfig",
    "LayerProviderConfig",
    "LogFormat",
    "LoggingConfig",
    "LogLevel",
    "RedisConnectionConfig",
]
