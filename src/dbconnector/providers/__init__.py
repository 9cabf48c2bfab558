"""Provider adapters for the supported backends."""

from .base import BaseProvider, Record

from .firebase import FirebaseProvider
from .supabase import SupabaseProvider
from .azure import AzureProvider, CosmosRequestError
from .factory import ProviderFactory

__all__ = [
    # Base interface
    "BaseProvider",
    "Record",

    # Adapters
    "FirebaseProvider",
    "SupabaseProvider",
    "AzureProvider",
    "CosmosRequestError",

    # Factory
    "ProviderFactory"
]
