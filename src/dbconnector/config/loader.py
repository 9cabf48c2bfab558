"""Configuration loader for JSON/YAML files and environment variables."""

import os
import json
import yaml
from pathlib import Path
from typing import Dict, Any, Union

from pydantic import ValidationError

from .schema import ConnectorConfig, config_key
from .settings import get_settings
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


class ConfigLoader:
    """Loads and validates connector configuration from various sources."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> ConnectorConfig:
        """Load configuration from a JSON or YAML file.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated ConnectorConfig object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                if file_path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f)
                elif file_path.suffix.lower() == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {file_path}")

        return self.load_from_dict(data)

    def load_from_dict(self, data: Dict[str, Any]) -> ConnectorConfig:
        """Load configuration from a dictionary, applying environment overrides."""
        data = self._apply_env_overrides(dict(data))

        try:
            config = ConnectorConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid connector configuration: {e}")

        self.logger.info("Configuration loaded", provider=config.provider.value)
        return config

    def load_from_settings(self) -> ConnectorConfig:
        """Build a configuration from ``DBCONNECTOR_*`` and provider environment settings."""
        settings = get_settings()

        if not settings.provider:
            raise ConfigurationError("DBCONNECTOR_PROVIDER is not set")

        section = settings.provider_section(settings.provider)
        if section is None:
            raise ConfigurationError(
                f"No environment settings found for provider '{settings.provider}'"
            )

        return self.load_from_dict({
            "provider": settings.provider,
            config_key(settings.provider): section,
        })

    def save_to_file(self, config: ConnectorConfig, file_path: Union[str, Path], format: str = 'yaml'):
        """Save configuration to file.

        Args:
            config: Configuration to save
            file_path: Output file path
            format: Output format ('yaml' or 'json')
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        data = config.to_mapping()

        with open(file_path, 'w', encoding='utf-8') as f:
            if format.lower() == 'yaml':
                yaml.safe_dump(data, f, default_flow_style=False, indent=2, allow_unicode=True)
            elif format.lower() == 'json':
                json.dump(data, f, indent=2)
            else:
                raise ConfigurationError(f"Unsupported format: {format}")

        self.logger.info("Configuration saved", file_path=str(file_path))

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration data.

        ``DBCONNECTOR_PROVIDER`` replaces the provider tag and
        ``DBCONNECTOR_POLL_INTERVAL_SECONDS`` the Cosmos polling interval.
        """
        overrides = []

        if os.getenv('DBCONNECTOR_PROVIDER'):
            data['provider'] = os.getenv('DBCONNECTOR_PROVIDER')
            overrides.append('provider')

        poll_interval = os.getenv('DBCONNECTOR_POLL_INTERVAL_SECONDS')
        azure = data.get('azure_config') or data.get('azureConfig')
        if poll_interval and isinstance(azure, dict):
            try:
                azure = {**azure, 'poll_interval_seconds': float(poll_interval)}
                azure.pop('pollIntervalSeconds', None)
                data.pop('azureConfig', None)
                data['azure_config'] = azure
                overrides.append('poll_interval_seconds')
            except ValueError:
                self.logger.warning("Invalid DBCONNECTOR_POLL_INTERVAL_SECONDS value, ignoring")

        if overrides:
            self.logger.info("Applied environment variable overrides", overrides=overrides)

        return data


def load_config_from_env() -> ConnectorConfig:
    """Load configuration from environment variables and default files.

    Looks for configuration in this order:
    1. DBCONNECTOR_CONFIG_FILE environment variable
    2. ./config/dbconnector.yaml, .yml, .json
    3. ./dbconnector.yaml, .yml, .json
    4. Provider settings from the environment (DBCONNECTOR_PROVIDER plus
       FIREBASE_*, SUPABASE_* or AZURE_COSMOS_*)
    """
    loader = ConfigLoader()
    logger = get_logger("load_config_from_env")

    config_file = os.getenv('DBCONNECTOR_CONFIG_FILE')
    if config_file:
        if os.path.exists(config_file):
            return loader.load_from_file(config_file)
        logger.warning("Specified config file not found", file=config_file)

    possible_files = [
        './config/dbconnector.yaml',
        './config/dbconnector.yml',
        './config/dbconnector.json',
        './dbconnector.yaml',
        './dbconnector.yml',
        './dbconnector.json'
    ]

    for file_path in possible_files:
        if os.path.exists(file_path):
            logger.info("Found configuration file", file=file_path)
            return loader.load_from_file(file_path)

    logger.info("No configuration file found, using environment settings")
    return loader.load_from_settings()
