"""Base provider interface shared by every backend adapter."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ..config.schema import ProviderConfig
from ..core.errors import ConnectorError, NOT_CONNECTED, create_error, error_code, normalize_error
from ..core.session import SessionStore
from ..core.subscriptions import SnapshotCallback, SnapshotStream, Subscription
from ..utils.logging import get_logger


Record = Dict[str, Any]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaseProvider(ABC):
    """Capability contract implemented by each backend adapter.

    Every public method raises ``ConnectorError`` only; native exceptions are
    wrapped with a ``<PROVIDER>_<OPERATION>_ERROR`` code.
    """

    name: str = ""
    config_model: type = ProviderConfig

    def __init__(self, config: ProviderConfig, session_store: Optional[SessionStore] = None, **kwargs):
        """Initialize the provider.

        Args:
            config: Validated provider sub-config
            session_store: Token store owned by the connector
            **kwargs: Provider-specific collaborators (clients, sessions)
        """
        self.config = config
        self.session_store = session_store if session_store is not None else SessionStore()
        self.logger = get_logger(self.__class__.__name__)
        self._connected = False
        self._subscriptions: Set[Subscription] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    # Lifecycle

    @abstractmethod
    async def connect(self) -> None:
        """Establish the client and session context for this backend."""

    async def close(self) -> None:
        """Stop open subscriptions and release clients."""
        for subscription in list(self._subscriptions):
            subscription.close()
        self._subscriptions.clear()
        self._connected = False

    # Auth

    @abstractmethod
    async def sign_in(self) -> Dict[str, Any]:
        """Authenticate and return ``{"user": {...}, "token": str}``."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the session; the stored token is always cleared."""

    @abstractmethod
    def current_user(self):
        """Current user dict or ``None`` (a coroutine for round-trip backends)."""

    # Data

    @abstractmethod
    async def read(self, path: str, where: Optional[Sequence[Any]] = None) -> List[Record]:
        """Fetch every record in ``path`` matching the optional predicate.

        There is no pagination: an unfiltered read returns the whole
        collection and callers must treat it as unbounded.
        """

    @abstractmethod
    async def write(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        """Upsert a record, stamping its last-modified field."""

    @abstractmethod
    async def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        """Merge ``data`` into an existing record."""

    @abstractmethod
    async def delete(self, path: str, doc_id: str) -> Dict[str, Any]:
        """Remove a record; a missing record counts as deleted."""

    @abstractmethod
    def _subscribe(self, subscription: Subscription, where: Optional[Sequence[Any]]) -> Callable[[], None]:
        """Attach the native change feed for ``subscription``; return its release action."""

    def on_snapshot(
        self,
        path: str,
        callback: SnapshotCallback,
        where: Optional[Sequence[Any]] = None
    ) -> Subscription:
        """Deliver full snapshots of ``path`` to ``callback(data, error)``.

        Returns:
            Subscription handle; call it to unsubscribe
        """
        subscription = Subscription(self.name, path, callback)

        try:
            self._require_connected()
            teardown = self._subscribe(subscription, where)
        except Exception as e:
            subscription.close()
            raise self._error(
                "snapshot_setup", f"Failed to set up snapshot for {path}", e, path=path, where=where
            )

        self._subscriptions.add(subscription)
        subscription.bind(lambda: self._release(subscription, teardown))

        self.logger.info("Snapshot subscription opened", provider=self.name, path=path)
        return subscription

    def snapshots(
        self,
        path: str,
        where: Optional[Sequence[Any]] = None,
        max_pending: int = 16
    ) -> SnapshotStream:
        """Async-iterator view of ``on_snapshot`` keeping at most ``max_pending`` unread snapshots."""
        return SnapshotStream(lambda callback: self.on_snapshot(path, callback, where=where), max_pending)

    # Helpers

    def _release(self, subscription: Subscription, teardown) -> None:
        self._subscriptions.discard(subscription)
        if teardown is not None:
            teardown()

    def _require_connected(self) -> None:
        if not self._connected:
            raise create_error(
                NOT_CONNECTED,
                f"{self.name} provider is not connected; call connect() first",
                self.name,
            )

    def _error(self, operation: str, message: str, error: BaseException, **context) -> ConnectorError:
        """Normalize ``error`` for ``operation`` and log it."""
        normalized = normalize_error(
            error,
            error_code(self.name, operation),
            message,
            self.name,
            {key: value for key, value in context.items() if value is not None},
        )
        self.logger.error(
            "Provider operation failed",
            provider=self.name,
            operation=operation,
            code=normalized.code,
            error=str(error)
        )
        return normalized

    def _snapshot_error(self, subscription: Subscription, error: BaseException) -> ConnectorError:
        """Error delivered through a subscription callback.

        Failures from an inner read keep their own code in the context.
        """
        context = {"path": subscription.path}
        if isinstance(error, ConnectorError):
            context["cause_code"] = error.code
            context["original_error"] = error
            normalized = create_error(
                error_code(self.name, "snapshot"),
                f"Snapshot error on {subscription.path}: {error.message}",
                self.name,
                context,
            )
            normalized.__cause__ = error
            return normalized

        return normalize_error(
            error,
            error_code(self.name, "snapshot"),
            f"Snapshot error on {subscription.path}",
            self.name,
            context,
        )
