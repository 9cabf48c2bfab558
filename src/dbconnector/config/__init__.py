"""Configuration package for the connector."""

from .settings import (
    FirebaseSettings,
    SupabaseSettings,
    AzureSettings,
    LoggingSettings,
    AppSettings,
    get_settings
)

from .schema import (
    ProviderType,
    ProviderConfig,
    FirebaseConfig,
    SupabaseConfig,
    AzureConfig,
    ConnectorConfig,
    AZURE_CONFIG_EXAMPLE,
    config_key
)

from .loader import (
    ConfigLoader,
    ConfigurationError,
    load_config_from_env
)

__all__ = [
    # Environment settings
    "FirebaseSettings",
    "SupabaseSettings",
    "AzureSettings",
    "LoggingSettings",
    "AppSettings",
    "get_settings",

    # Connector configuration
    "ProviderType",
    "ProviderConfig",
    "FirebaseConfig",
    "SupabaseConfig",
    "AzureConfig",
    "ConnectorConfig",
    "AZURE_CONFIG_EXAMPLE",
    "config_key",

    "ConfigLoader",
    "ConfigurationError",
    "load_config_from_env"
]
