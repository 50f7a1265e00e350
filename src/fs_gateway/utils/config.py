# src/fs_gateway/utils/config.py
"""
Configuration management for the FreeSWITCH gateway.
Handles loading and validating configuration from YAML files and environment variables.
Provides type-safe access to configuration values with comprehensive error checking.
"""

import os
import yaml
import logging
from typing import Any, Dict, Optional, Union
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

@dataclass
class LoggingConfig:
    """Logging configuration parameters"""
    level: str = "INFO"
    format: str = "json"
    output: Optional[str] = None

@dataclass
class APIConfig:
    """HTTP API configuration parameters"""
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

@dataclass
class ReconnectConfig:
    """Reconnect backoff parameters (seconds)"""
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0

@dataclass
class SwitchConfig:
    """FreeSWITCH event socket connection parameters"""
    host: str = "127.0.0.1"
    port: int = 8021
    password: str = "ClueCon"
    connect_timeout: float = 5.0
    auth_timeout: float = 5.0
    command_timeout: float = 5.0
    job_timeout: float = 30.0
    pipelining: bool = True
    keepalive_interval: float = 0.0
    subscribe_events: list[str] = field(default_factory=list)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)

@dataclass
class EventsConfig:
    """Event fan-out configuration parameters"""
    queue_size: int = 1000

class Config:
    """
    Configuration for the gateway.
    Handles loading, validation, and access to configuration values.
    An instance is created at startup and passed to the components that need it.
    """

    def __init__(self):
        self.logging = LoggingConfig()
        self.api = APIConfig()
        self.switch = SwitchConfig()
        self.events = EventsConfig()
        self._config_path: Optional[Path] = None
        self._raw_config: Dict[str, Any] = {}
        logger.debug("Configuration manager initialized")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        Build a validated configuration from an in-memory dictionary.

        Args:
            data: Raw configuration sections

        Returns:
            Config instance
        """
        config = cls()
        config._merge_configs(data)
        config._validate_and_create_configs()
        return config

    def load(self, config_path: Optional[Union[str, Path]] = None) -> None:
        """
        Load configuration from YAML file with environment variable overrides.
        Without a path only built-in defaults and the environment apply.

        Args:
            config_path: Path to YAML configuration file

        Raises:
            ConfigurationError: If configuration loading or validation fails
        """
        try:
            if config_path is not None:
                logger.debug(f"Attempting to load configuration from {config_path}")
                self._config_path = Path(config_path)

                if not self._config_path.exists():
                    raise ConfigurationError(f"Configuration file not found: {config_path}")

                with open(self._config_path) as f:
                    config_data = yaml.safe_load(f) or {}

                if not isinstance(config_data, dict):
                    raise ConfigurationError("Configuration root must be a mapping")

                self._merge_configs(config_data)
                logger.debug(f"Merged configuration from {self._config_path}")

            self._apply_env_overrides()
            self._validate_and_create_configs()

            logger.info(f"Configuration loaded successfully from {self._config_path or 'defaults'}")
            logger.debug(f"Logging config: {vars(self.logging)}")
            logger.debug(f"API config: {vars(self.api)}")
            logger.debug(f"Events config: {vars(self.events)}")

        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Failed to load configuration: {str(e)}", exc_info=True)
            raise ConfigurationError(f"Configuration loading failed: {str(e)}") from e

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration"""
        env_mapping = {
            "API_HOST": ("api", "host", str),
            "API_PORT": ("api", "port", int),
            "LOG_LEVEL": ("logging", "level", str),
            "LOG_FORMAT": ("logging", "format", str),
            "FREESWITCH_HOST": ("switch", "host", str),
            "FREESWITCH_PORT": ("switch", "port", int),
            "FREESWITCH_PASSWORD": ("switch", "password", str),
        }

        for env_var, (section, key, convert) in env_mapping.items():
            if env_var in os.environ:
                try:
                    value = convert(os.environ[env_var])
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid environment variable {env_var}: {str(e)}"
                    )
                self._raw_config.setdefault(section, {})[key] = value
                # Never echo the secret
                shown = "***" if key == "password" else value
                logger.debug(f"Applied environment override: {env_var}={shown}")

    def _validate_and_create_configs(self) -> None:
        """Validate configuration and create typed configuration objects"""
        try:
            self.logging = LoggingConfig(
                level=self._get_config_value("logging", "level", str, "INFO").upper(),
                format=self._get_config_value("logging", "format", str, "json").lower(),
                output=self._get_config_value("logging", "output", str, None, required=False)
            )
            if self.logging.format not in ("json", "console"):
                raise ConfigurationError(
                    f"Invalid logging.format: {self.logging.format} (expected json or console)"
                )

            self.api = APIConfig(
                host=self._get_config_value("api", "host", str, "0.0.0.0"),
                port=self._get_config_value("api", "port", int, 3000),
                cors_origins=self._get_config_value("api", "cors_origins", list, ["*"])
            )

            reconnect = self._raw_config.get("switch", {}).get("reconnect", {}) or {}
            self.switch = SwitchConfig(
                host=self._get_config_value("switch", "host", str, "127.0.0.1"),
                port=self._get_config_value("switch", "port", int, 8021),
                password=self._get_config_value("switch", "password", str, "ClueCon"),
                connect_timeout=self._get_config_value("switch", "connect_timeout", float, 5.0),
                auth_timeout=self._get_config_value("switch", "auth_timeout", float, 5.0),
                command_timeout=self._get_config_value("switch", "command_timeout", float, 5.0),
                job_timeout=self._get_config_value("switch", "job_timeout", float, 30.0),
                pipelining=self._get_config_value("switch", "pipelining", bool, True),
                keepalive_interval=self._get_config_value("switch", "keepalive_interval", float, 0.0),
                subscribe_events=self._get_config_value("switch", "subscribe_events", list, []),
                reconnect=ReconnectConfig(
                    initial_delay=self._get_config_value(
                        "reconnect", "initial_delay", float, 1.0, config_dict=reconnect),
                    max_delay=self._get_config_value(
                        "reconnect", "max_delay", float, 30.0, config_dict=reconnect),
                    backoff_factor=self._get_config_value(
                        "reconnect", "backoff_factor", float, 2.0, config_dict=reconnect)
                )
            )

            if not 0 < self.switch.port < 65536:
                raise ConfigurationError(f"Invalid switch.port: {self.switch.port}")
            if not self.switch.password:
                raise ConfigurationError("switch.password must not be empty")
            for name in ("connect_timeout", "auth_timeout", "command_timeout", "job_timeout"):
                if getattr(self.switch, name) <= 0:
                    raise ConfigurationError(f"switch.{name} must be positive")
            if self.switch.reconnect.initial_delay <= 0:
                raise ConfigurationError("switch.reconnect.initial_delay must be positive")
            if self.switch.reconnect.max_delay < self.switch.reconnect.initial_delay:
                raise ConfigurationError("switch.reconnect.max_delay must be >= initial_delay")
            if self.switch.reconnect.backoff_factor < 1:
                raise ConfigurationError("switch.reconnect.backoff_factor must be >= 1")

            self.events = EventsConfig(
                queue_size=self._get_config_value("events", "queue_size", int, 1000)
            )
            if self.events.queue_size <= 0:
                raise ConfigurationError("events.queue_size must be positive")

            logger.debug("Configuration validation completed successfully")

        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Configuration validation failed", exc_info=True)
            raise ConfigurationError(f"Configuration validation failed: {str(e)}") from e

    def _get_config_value(
        self,
        section: str,
        key: str,
        value_type: type,
        default: Any = None,
        config_dict: Optional[Dict] = None,
        required: bool = True
    ) -> Any:
        """
        Get typed configuration value with validation.

        Args:
            section: Configuration section name
            key: Configuration key
            value_type: Expected value type
            default: Optional default value
            config_dict: Optional alternative configuration dictionary
            required: Whether a missing value without default is an error

        Returns:
            Typed configuration value

        Raises:
            ConfigurationError: If value is missing or invalid type
        """
        config = config_dict if config_dict is not None else (self._raw_config.get(section) or {})
        value = config.get(key)

        if value is None:
            if default is None:
                if required:
                    raise ConfigurationError(f"Required configuration missing: {section}.{key}")
                return None
            return default

        try:
            if value_type == bool and isinstance(value, str):
                value = value.strip().lower() in ("1", "true", "yes", "on")
            elif value_type == list and isinstance(value, str):
                value = [value]
            elif not isinstance(value, value_type):
                value = value_type(value)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid type for {section}.{key}: expected {value_type.__name__}, got {type(value).__name__}"
            ) from e

        return value

    def _merge_configs(self, custom_config: Dict[str, Any]) -> None:
        """Deep merge custom configuration with existing config"""
        def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
            for key, value in override.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    deep_merge(base[key], value)
                else:
                    base[key] = value

        deep_merge(self._raw_config, custom_config)

    def reload(self) -> None:
        """Reload configuration from file"""
        logger.info("Reloading configuration")
        if self._config_path:
            self._raw_config = {}
            self.load(self._config_path)
        else:
            raise ConfigurationError("No configuration path set, cannot reload")
