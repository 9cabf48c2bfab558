"""Provider factory mapping provider tags to adapter classes."""

from typing import Dict, List, Optional, Type

from .base import BaseProvider
from .firebase import FirebaseProvider
from .supabase import SupabaseProvider
from .azure import AzureProvider


class ProviderFactory:
    """Registry of provider adapters keyed by provider tag."""

    _provider_classes: Dict[str, Type[BaseProvider]] = {
        FirebaseProvider.name: FirebaseProvider,
        SupabaseProvider.name: SupabaseProvider,
        AzureProvider.name: AzureProvider,
    }

    @classmethod
    def get_provider_class(cls, provider: str) -> Optional[Type[BaseProvider]]:
        """Adapter class registered for ``provider``, or None."""
        if not isinstance(provider, str):
            return None
        return cls._provider_classes.get(provider)

    @classmethod
    def get_supported_providers(cls) -> List[str]:
        """Get list of registered provider tags."""
        return list(cls._provider_classes.keys())

    @classmethod
    def register_provider(cls, provider_class: Type[BaseProvider]):
        """Register an additional provider adapter.

        Args:
            provider_class: Adapter class with ``name`` and ``config_model`` set
        """
        if not provider_class.name:
            raise ValueError("Provider classes must define a name")
        cls._provider_classes[provider_class.name] = provider_class

    @classmethod
    def unregister_provider(cls, provider: str):
        cls._provider_classes.pop(provider, None)
