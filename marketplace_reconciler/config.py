"""Configuration management - loads reconciler.yaml and environment overrides."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from marketplace_reconciler.models import (
    DatabaseConfig,
    FulfillmentConfig,
    NotificationConfig,
    PollerConfig,
    ProvisioningConfig,
    ReconcilerSettings,
)

# Environment variables that override single settings (secrets and deployment specifics)
ENV_OVERRIDES = {
    "DATABASE_URL": ("database", "url"),
    "FULFILLMENT_ACCESS_TOKEN": ("fulfillment", "access_token"),
    "FULFILLMENT_BASE_URL": ("fulfillment", "base_url"),
    "PROVISIONING_URL": ("provisioning", "url"),
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads reconciler.yaml and provides validated access to:
    - Database connection
    - Fulfillment API and provisioning endpoint
    - Poller and notification settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to reconciler.yaml. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/reconciler.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._settings: Optional[ReconcilerSettings] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/reconciler.yaml")

    def _load_config(self) -> None:
        """Load, override from the environment, and validate reconciler.yaml."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/reconciler.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}")

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")
        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self._config_path}")

        self._apply_env_overrides(raw_config)

        try:
            self._settings = ReconcilerSettings(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}")

    @staticmethod
    def _apply_env_overrides(raw_config: dict) -> None:
        for env_var, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                raw_config.setdefault(section, {})
                if raw_config[section] is None:
                    raw_config[section] = {}
                raw_config[section][key] = value

    @property
    def settings(self) -> ReconcilerSettings:
        """Get validated settings."""
        if self._settings is None:
            raise ConfigurationError("Configuration not loaded")
        return self._settings

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def database(self) -> DatabaseConfig:
        return self.settings.database

    @property
    def fulfillment(self) -> FulfillmentConfig:
        return self.settings.fulfillment

    @property
    def provisioning(self) -> ProvisioningConfig:
        return self.settings.provisioning

    @property
    def poller(self) -> PollerConfig:
        return self.settings.poller

    @property
    def notifications(self) -> NotificationConfig:
        return self.settings.notifications

    @property
    def automatic_provisioning(self) -> bool:
        """Whether customer activation runs provisioning immediately."""
        return self.settings.provisioning.automatic_provisioning

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()


def reset_config() -> None:
    """Drop the global configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None
