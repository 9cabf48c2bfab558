"""Connector factory and the uniform ``auth``/``db`` façade."""

from collections.abc import Mapping
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError

from .config.schema import ConnectorConfig, config_key
from .config.loader import ConfigLoader, ConfigurationError, load_config_from_env
from .core.errors import CONNECTOR, INVALID_CONFIG, UNSUPPORTED_PROVIDER, create_error
from .core.session import SessionStore
from .core.subscriptions import SnapshotCallback, SnapshotStream, Subscription
from .providers.base import BaseProvider, Record
from .providers.factory import ProviderFactory
from .utils.logging import get_logger

logger = get_logger(__name__)


class AuthFacade:
    """Provider-independent authentication surface."""

    def __init__(self, provider: BaseProvider):
        self._provider = provider

    async def sign_in(self) -> Dict[str, Any]:
        return await self._provider.sign_in()

    async def sign_out(self) -> None:
        await self._provider.sign_out()

    def current_user(self):
        """User dict or None; awaitable for providers that need a round trip (supabase)."""
        return self._provider.current_user()


class DatabaseFacade:
    """Provider-independent data surface."""

    def __init__(self, provider: BaseProvider):
        self._provider = provider

    async def read(self, path: str, where: Optional[Sequence[Any]] = None) -> list:
        return await self._provider.read(path, where)

    async def write(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        return await self._provider.write(path, doc_id, data)

    async def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        return await self._provider.update(path, doc_id, data)

    async def delete(self, path: str, doc_id: str) -> Dict[str, Any]:
        return await self._provider.delete(path, doc_id)

    def on_snapshot(
        self,
        path: str,
        callback: SnapshotCallback,
        where: Optional[Sequence[Any]] = None
    ) -> Subscription:
        return self._provider.on_snapshot(path, callback, where=where)

    def snapshots(self, path: str, where: Optional[Sequence[Any]] = None, max_pending: int = 16) -> SnapshotStream:
        return self._provider.snapshots(path, where=where, max_pending=max_pending)


class Facade(NamedTuple):
    """Result of ``Connector.connect()``; unpacks as ``auth, db``."""

    auth: AuthFacade
    db: DatabaseFacade


class Connector:
    """One configured provider plus the session store it owns."""

    def __init__(self, provider: BaseProvider, session_store: SessionStore):
        self._provider = provider
        self.session_store = session_store
        self._facade: Optional[Facade] = None

    @property
    def provider(self) -> BaseProvider:
        return self._provider

    def get_provider(self) -> str:
        return self._provider.name

    async def connect(self) -> Facade:
        """Run the provider handshake and return the ``(auth, db)`` façade."""
        await self._provider.connect()

        if self._facade is None:
            self._facade = Facade(AuthFacade(self._provider), DatabaseFacade(self._provider))

        logger.info("Connector ready", provider=self._provider.name)
        return self._facade

    async def close(self) -> None:
        await self._provider.close()

    async def __aenter__(self) -> Facade:
        try:
            return await self.connect()
        except BaseException:
            await self.close()
            raise

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _invalid(message: str, config: Any):
    return create_error(INVALID_CONFIG, message, CONNECTOR, {"config": _redact(config)})


def _redact(config: Any) -> Any:
    """Copy of ``config`` safe to attach to errors and logs."""
    if isinstance(config, BaseModel):
        config = config.model_dump()
    if not isinstance(config, Mapping):
        return config

    redacted = {}
    for key, value in config.items():
        if isinstance(value, Mapping):
            redacted[key] = _redact(value)
        elif isinstance(key, str) and any(word in key.lower() for word in ("key", "token", "secret")):
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted


def validate_config(config: Any) -> Tuple[Type[BaseProvider], BaseModel]:
    """Resolve the adapter class and validated sub-config for ``config``.

    Raises:
        ConnectorError: ``INVALID_CONFIG`` or ``UNSUPPORTED_PROVIDER``
    """
    if isinstance(config, ConnectorConfig):
        config = config.to_mapping()

    if not isinstance(config, Mapping) or not config.get("provider"):
        raise _invalid("Configuration must include a provider field", config)

    provider = config["provider"]
    provider_class = ProviderFactory.get_provider_class(provider)
    if provider_class is None:
        raise create_error(
            UNSUPPORTED_PROVIDER,
            f'Provider "{provider}" is not supported',
            CONNECTOR,
            {"config": _redact(config), "supported": ProviderFactory.get_supported_providers()},
        )

    key = config_key(provider)
    camel_key = f"{provider}Config"
    sub_config = config.get(key, config.get(camel_key))
    if sub_config is None:
        raise _invalid(f"{provider.capitalize()} provider requires {key}", config)

    if isinstance(sub_config, provider_class.config_model):
        return provider_class, sub_config
    if isinstance(sub_config, BaseModel):
        sub_config = sub_config.model_dump()

    try:
        return provider_class, provider_class.config_model.model_validate(sub_config)
    except ValidationError as e:
        raise _invalid(f"Invalid {key}: {e}", config) from e


def create_connector(
    config: Any,
    session_store: Optional[SessionStore] = None,
    **provider_options
) -> Connector:
    """Validate ``config`` and build a connector for its provider.

    No network I/O happens here; it starts with ``Connector.connect()``.

    Args:
        config: ``ConnectorConfig`` or a mapping ``{"provider": ..., "<provider>_config": {...}}``
        session_store: Token store to use; a fresh one per connector by default
        **provider_options: Collaborators passed to the adapter (clients, sessions)

    Raises:
        ConnectorError: ``INVALID_CONFIG`` or ``UNSUPPORTED_PROVIDER``
    """
    provider_class, provider_config = validate_config(config)
    store = session_store if session_store is not None else SessionStore()

    provider = provider_class(provider_config, session_store=store, **provider_options)
    logger.info("Connector created", provider=provider.name)

    return Connector(provider, store)


def connector_from_file(file_path: Optional[str] = None, **kwargs) -> Connector:
    """Build a connector from a YAML/JSON file, or from the environment when no file is given.

    Raises:
        ConnectorError: ``INVALID_CONFIG`` when the configuration cannot be loaded
    """
    try:
        config = ConfigLoader().load_from_file(file_path) if file_path else load_config_from_env()
    except ConfigurationError as e:
        raise create_error(INVALID_CONFIG, str(e), CONNECTOR, {"file_path": file_path}) from e

    return create_connector(config, **kwargs)
