"""Provider-independent building blocks."""

from .errors import (
    ConnectorError,
    INVALID_CONFIG,
    UNSUPPORTED_PROVIDER,
    UNSUPPORTED_OPERATOR,
    NOT_CONNECTED,
    create_error,
    error_code,
    normalize_error
)
from .session import SessionStore
from .query import (
    SUPPORTED_OPERATORS,
    translate_operator,
    translate_predicate,
    format_sql_literal,
    build_cosmos_query
)
from .subscriptions import (
    Subscription,
    PollingTask,
    SnapshotResult,
    SnapshotStream
)

__all__ = [
    "ConnectorError",
    "INVALID_CONFIG",
    "UNSUPPORTED_PROVIDER",
    "UNSUPPORTED_OPERATOR",
    "NOT_CONNECTED",
    "create_error",
    "error_code",
    "normalize_error",
    "SessionStore",
    "SUPPORTED_OPERATORS",
    "translate_operator",
    "translate_predicate",
    "format_sql_literal",
    "build_cosmos_query",
    "Subscription",
    "PollingTask",
    "SnapshotResult",
    "SnapshotStream"
]
