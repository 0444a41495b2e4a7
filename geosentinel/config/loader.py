"""
Configuration loader for YAML-based engine configuration.

Loads config/settings.yaml, validates it with the Pydantic models in
geosentinel.config.models and applies environment overrides.

Environment variables override:
    - CONFIG_PATH: Configuration directory (default: config)
    - REDIS_URL: Redis connection URL
    - LAYER_PROVIDER_URL: Feature store base URL
    - LOG_LEVEL: Application log level

Example:
    >>> from geosentinel.config.loader import load_config
    >>> config = load_config("config")
    >>> print(config.layer_provider.base_url)
    http://localhost:8081
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from geosentinel.config.models import AppConfig, LogLevel

SETTINGS_FILE = "settings.yaml"


class ConfigLoadError(Exception):
    """
    Raised when configuration loading fails.

    Attributes:
        message: Error message describing what went wrong.
        file_path: Path to the file that caused the error, if applicable.
        cause: Original exception that caused the error, if any.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Path] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.file_path = file_path
        self.cause = cause
        super().__init__(message)


class ConfigLoader:
    """
    Loads and validates engine configuration from a config directory.

    Example:
        >>> loader = ConfigLoader("config")
        >>> config = loader.load()
        >>> config.engine.max_event_services
        64
    """

    def __init__(self, config_dir: Path | str = "config"):
        """
        Initialize config loader.

        Args:
            config_dir: Path to configuration directory (default: 'config').

        Raises:
            ConfigLoadError: If config directory does not exist.
        """
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise ConfigLoadError(
                f"Configuration directory not found: {self.config_dir}",
                file_path=self.config_dir,
            )

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """
        Load a YAML file from the config directory.

        Raises:
            ConfigLoadError: If file not found, not a mapping, or invalid YAML.
        """
        file_path = self.config_dir / filename
        if not file_path.exists():
            raise ConfigLoadError(
                f"Configuration file not found: {file_path}",
                file_path=file_path,
            )

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigLoadError(
                f"Invalid YAML syntax in {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e
        except OSError as e:
            raise ConfigLoadError(
                f"Error reading {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(
                f"Configuration file must contain a mapping: {file_path}",
                file_path=file_path,
            )
        return data

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge environment overrides into the raw settings."""
        merged = {key: dict(value or {}) for key, value in data.items()}

        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            merged.setdefault("redis", {})["url"] = redis_url

        provider_url = os.getenv("LAYER_PROVIDER_URL")
        if provider_url:
            merged.setdefault("layer_provider", {})["base_url"] = provider_url

        level = self._get_log_level()
        if level is not None:
            merged.setdefault("logging", {})["level"] = level.value

        return merged

    def _get_log_level(self) -> Optional[LogLevel]:
        """
        Get log level from environment.

        Returns:
            LogLevel from LOG_LEVEL, or None when unset or unrecognized.
        """
        level_str = os.getenv("LOG_LEVEL")
        if not level_str:
            return None
        try:
            return LogLevel(level_str.upper())
        except ValueError:
            return None

    def load(self) -> AppConfig:
        """
        Load and validate the configuration.

        Returns:
            AppConfig: Validated application configuration.

        Raises:
            ConfigLoadError: If the configuration is invalid or missing.
        """
        file_path = self.config_dir / SETTINGS_FILE
        data = self._load_yaml(SETTINGS_FILE)

        try:
            return AppConfig.model_validate(self._apply_env_overrides(data))
        except ValidationError as e:
            raise ConfigLoadError(
                f"Configuration validation failed: {e}",
                file_path=file_path,
                cause=e,
            ) from e
        except (TypeError, ValueError) as e:
            raise ConfigLoadError(
                f"Malformed configuration section: {e}",
                file_path=file_path,
                cause=e,
            ) from e


def load_config(config_dir: Optional[Path | str] = None) -> AppConfig:
    """
    Convenience function to load engine configuration.

    Args:
        config_dir: Configuration directory; defaults to $CONFIG_PATH or 'config'.

    Returns:
        AppConfig: Validated application configuration.

    Raises:
        ConfigLoadError: If configuration loading fails.
    """
    if config_dir is None:
        config_dir = os.getenv("CONFIG_PATH", "config")
    loader = ConfigLoader(config_dir)
    return loader.load()
