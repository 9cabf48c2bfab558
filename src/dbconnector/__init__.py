"""Multi-provider data and auth connector for Firebase, Supabase and Azure Cosmos DB."""

__version__ = "0.1.0"

from .connector import (
    AuthFacade,
    DatabaseFacade,
    Facade,
    Connector,
    create_connector,
    connector_from_file,
    validate_config
)
from .config import (
    ConnectorConfig,
    FirebaseConfig,
    SupabaseConfig,
    AzureConfig,
    ConfigLoader
)
from .core import (
    ConnectorError,
    SessionStore,
    Subscription,
    SnapshotResult,
    SnapshotStream
)
from .providers import ProviderFactory, BaseProvider

__all__ = [
    "__version__",
    "AuthFacade",
    "DatabaseFacade",
    "Facade",
    "Connector",
    "create_connector",
    "connector_from_file",
    "validate_config",
    "ConnectorConfig",
    "FirebaseConfig",
    "SupabaseConfig",
    "AzureConfig",
    "ConfigLoader",
    "ConnectorError",
    "SessionStore",
    "Subscription",
    "SnapshotResult",
    "SnapshotStream",
    "ProviderFactory",
    "BaseProvider"
]
