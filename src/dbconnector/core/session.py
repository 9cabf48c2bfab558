"""Connector-owned session token storage."""

from typing import Dict, Iterator, Optional


class SessionStore:
    """Keyed token store owned by one connector.

    Tokens are stored under ``<provider>_token`` so several providers can
    share one store without clobbering each other. A store is never global:
    pass the same instance to two connectors only when they should share it.

    Providers whose tokens expire also keep ``<provider>_refresh_token`` and
    ``<provider>_token_expires_at`` (epoch seconds, as text).
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    @staticmethod
    def token_key(provider: str) -> str:
        return f"{provider}_token"

    @staticmethod
    def refresh_key(provider: str) -> str:
        return f"{provider}_refresh_token"

    @staticmethod
    def expiry_key(provider: str) -> str:
        return f"{provider}_token_expires_at"

    def get_token(self, provider: str) -> Optional[str]:
        return self._items.get(self.token_key(provider))

    def set_token(self, provider: str, token: str) -> None:
        self._items[self.token_key(provider)] = token

    def get_refresh(self, provider: str) -> Optional[str]:
        return self._items.get(self.refresh_key(provider))

    def get_expiry(self, provider: str) -> Optional[float]:
        value = self._items.get(self.expiry_key(provider))
        return float(value) if value is not None else None

    def set_refresh(self, provider: str, refresh_token: str, expires_at: float) -> None:
        self._items[self.refresh_key(provider)] = refresh_token
        self._items[self.expiry_key(provider)] = repr(float(expires_at))

    def clear_token(self, provider: str) -> None:
        """Forget every session entry for ``provider``."""
        for key in (self.token_key(provider), self.refresh_key(provider), self.expiry_key(provider)):
            self._items.pop(key, None)

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def keys(self) -> Iterator[str]:
        return iter(list(self._items))

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)
