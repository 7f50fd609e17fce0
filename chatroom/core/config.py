"""
Configuration loader and manager for the relay server.
Implements hot-reload capability with file watcher.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List, Literal
from pydantic import BaseModel, Field, ValidationError, ConfigDict
from pydantic_settings import BaseSettings
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
import logging

logger = logging.getLogger(__name__)


class APIConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: List[str] = ["*"]


class RelayConfig(BaseModel):
    """Stream relay configuration."""
    channel_size: int = Field(1, ge=1)
    idle_timeout: Optional[float] = Field(None, gt=0)
    on_conflict: Literal["replace", "reject"] = "replace"
    close_code: int = 1008


class AppSettings(BaseSettings):
    """Application settings from environment variables."""

    # Application
    app_name: str = "Chat Room Relay"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Configuration files
    config_dir: str = "config"
    config_watch: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="CHATROOM_",
        case_sensitive=False,
        extra="ignore"
    )


class ConfigLoader:
    """
    Configuration loader with hot-reload capability.
    Loads YAML configurations and merges with environment variables.
    """

    def __init__(self, config_dir: Optional[str] = None, settings: Optional[AppSettings] = None):
        self.settings = settings or AppSettings()
        self.config_dir = Path(config_dir or self.settings.config_dir)
        self.config_cache: Dict[str, Any] = {}
        self.observer = None

        # Load initial configuration
        self.reload_config()

    def load_config(self, path: str) -> Dict[str, Any]:
        """
        Load YAML configuration file.

        Args:
            path: Path to the YAML file

        Returns:
            Dictionary containing configuration data
        """
        file_path = self.config_dir / path if not Path(path).is_absolute() else Path(path)
        try:
            with open(file_path, 'r') as file:
                config = yaml.safe_load(file) or {}

            # Replace environment variables
            config = self._replace_env_vars(config)

            logger.info(f"Loaded configuration from {file_path}")
            return config

        except FileNotFoundError:
            logger.debug(f"Configuration file not found: {file_path}")
            return {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML file {file_path}: {e}")
            return {}

    def _replace_env_vars(self, config: Any) -> Any:
        """
        Recursively replace environment variables in configuration.
        Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax.
        """
        if isinstance(config, dict):
            return {k: self._replace_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._replace_env_vars(item) for item in config]
        elif isinstance(config, str) and config.startswith("${") and config.endswith("}"):
            var_expr = config[2:-1]
            if ":-" in var_expr:
                var_name, default = var_expr.split(":-", 1)
                return os.getenv(var_name, default)
            else:
                return os.getenv(var_expr, config)
        return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """
        Validate configuration against Pydantic models.

        Args:
            config: Configuration dictionary to validate

        Returns:
            True if valid, False otherwise
        """
        try:
            if "api" in config:
                APIConfig(**config["api"])

            if "relay" in config:
                RelayConfig(**config["relay"])

            return True

        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            return False

    def merge_configs(self, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge multiple configuration dictionaries.
        Later configs override earlier ones.
        """
        result = {}

        for config in configs:
            self._deep_merge(result, config)

        return result

    def _deep_merge(self, target: Dict, source: Dict) -> Dict:
        """Deep merge source into target dictionary."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value
        return target

    def get_environment_config(self) -> Dict[str, Any]:
        """
        Load environment-specific configuration.

        Returns:
            config.yaml merged with config.<environment>.yaml
        """
        env = self.settings.environment

        base_config = self.load_config("config.yaml")
        env_config = self.load_config(f"config.{env}.yaml")

        # Env-specific overrides base
        merged = self.merge_configs(base_config, env_config)

        merged["app"] = {
            "name": self.settings.app_name,
            "version": self.settings.app_version,
            "environment": self.settings.environment,
            "debug": self.settings.debug
        }

        return merged

    def reload_config(self):
        """Reload all configurations, keeping the previous ones if validation fails."""
        logger.info("Reloading configuration...")
        config = self.get_environment_config()

        if not self.validate_config(config):
            logger.warning("Configuration validation failed, using previous config")
            return

        self.config_cache = config

    def start_watching(self):
        """Start watching configuration files for changes."""
        if self.observer is not None:
            return

        if not self.config_dir.is_dir():
            logger.warning(f"Configuration directory {self.config_dir} does not exist, not watching")
            return

        event_handler = ConfigFileHandler(self)
        self.observer = Observer()
        self.observer.schedule(event_handler, str(self.config_dir), recursive=False)
        self.observer.start()
        logger.info(f"Started watching configuration files in {self.config_dir}")

    def stop_watching(self):
        """Stop watching configuration files."""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None
            logger.info("Stopped watching configuration files")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.
        Example: get("relay.channel_size")
        """
        keys = key.split(".")
        value = self.config_cache

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def get_api_config(self) -> APIConfig:
        """Get validated API configuration."""
        return APIConfig(**self.config_cache.get("api", {}))

    def get_relay_config(self) -> RelayConfig:
        """Get validated relay configuration."""
        return RelayConfig(**self.config_cache.get("relay", {}))


class ConfigFileHandler(FileSystemEventHandler):
    """Handler for configuration file changes."""

    def __init__(self, config_loader: ConfigLoader):
        self.config_loader = config_loader

    def on_modified(self, event):
        if not event.is_directory and str(event.src_path).endswith('.yaml'):
            logger.info(f"Configuration file changed: {event.src_path}")
            self.config_loader.reload_config()


# Global config instance
config_loader = ConfigLoader()


# Convenience functions
def get_settings() -> AppSettings:
    """Get application settings."""
    return config_loader.settings
