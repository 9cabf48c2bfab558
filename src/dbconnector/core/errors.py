"""Normalized error envelope shared by every provider."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Provider-independent codes
INVALID_CONFIG = "INVALID_CONFIG"
UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
UNSUPPORTED_OPERATOR = "UNSUPPORTED_OPERATOR"
NOT_CONNECTED = "NOT_CONNECTED"

# Source tag for errors raised outside any provider
CONNECTOR = "connector"


class ConnectorError(Exception):
    """Backend-agnostic failure raised across the connector boundary.

    Attributes:
        code: Machine-readable error code, e.g. ``AZURE_READ_ERROR``
        message: Human-readable description
        provider: Provider tag that produced the error, or ``connector``
        context: Path, id, predicate and the native error, when available
        timestamp: ISO8601 UTC time the error was created
    """

    def __init__(
        self,
        code: str,
        message: str,
        provider: str,
        context: Optional[Dict[str, Any]] = None,
        timestamp: Optional[str] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider = provider
        self.context = context or {}
        self.timestamp = timestamp or datetime.now(timezone.utc).isoformat()

    @property
    def original_error(self) -> Optional[BaseException]:
        return self.context.get("original_error")

    def to_dict(self) -> Dict[str, Any]:
        """Envelope as a plain dict; the native error is rendered as text."""
        context = {
            key: (repr(value) if isinstance(value, BaseException) else value)
            for key, value in self.context.items()
        }
        return {
            "code": self.code,
            "message": self.message,
            "provider": self.provider,
            "context": context,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"ConnectorError(code={self.code!r}, provider={self.provider!r}, message={self.message!r})"


def error_code(provider: str, operation: str) -> str:
    """Build a provider-scoped code: ``error_code("azure", "read")`` -> ``AZURE_READ_ERROR``."""
    return f"{provider.upper()}_{operation.upper()}_ERROR"


def create_error(
    code: str,
    message: str,
    provider: str,
    context: Optional[Dict[str, Any]] = None
) -> ConnectorError:
    """Create a normalized error."""
    return ConnectorError(code, message, provider, context)


def normalize_error(
    error: BaseException,
    code: str,
    message: str,
    provider: str,
    context: Optional[Dict[str, Any]] = None
) -> ConnectorError:
    """Wrap a native exception; an existing ``ConnectorError`` is returned unchanged."""
    if isinstance(error, ConnectorError):
        return error

    context = dict(context or {})
    context["original_error"] = error

    normalized = ConnectorError(code, f"{message}: {error}", provider, context)
    normalized.__cause__ = error
    return normalized
