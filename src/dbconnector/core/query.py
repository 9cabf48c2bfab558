"""Translation of ``(field, operator, value)`` predicates into native filters.

Each provider gets a total mapping over the supported operators. Anything
that cannot be expressed raises ``UNSUPPORTED_OPERATOR``; a predicate is never
dropped, since that would turn a filtered read into an unfiltered one.
"""

import json
import math
from typing import Any, Dict, Sequence, Tuple

from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import ConnectorError, UNSUPPORTED_OPERATOR, create_error


SUPPORTED_OPERATORS = ("==", ">", "<", ">=", "<=")

FIRESTORE_OPERATORS: Dict[str, str] = {
    "==": "==",
    ">": ">",
    "<": "<",
    ">=": ">=",
    "<=": "<=",
}

POSTGREST_OPERATORS: Dict[str, str] = {
    "==": "eq",
    ">": "gt",
    "<": "lt",
    ">=": "gte",
    "<=": "lte",
}

COSMOS_SQL_OPERATORS: Dict[str, str] = {
    "==": "=",
    ">": ">",
    "<": "<",
    ">=": ">=",
    "<=": "<=",
}

OPERATOR_TABLES: Dict[str, Dict[str, str]] = {
    "firebase": FIRESTORE_OPERATORS,
    "supabase": POSTGREST_OPERATORS,
    "azure": COSMOS_SQL_OPERATORS,
}

Predicate = Tuple[str, str, Any]


def _unsupported(provider: str, message: str, **context) -> ConnectorError:
    return create_error(UNSUPPORTED_OPERATOR, message, provider, context)


def parse_predicate(provider: str, where: Sequence[Any]) -> Predicate:
    """Check the predicate shape and return it as a tuple."""
    if isinstance(where, (str, bytes)) or not isinstance(where, Sequence) or len(where) != 3:
        raise _unsupported(provider, f"Predicate must be (field, operator, value), got {where!r}", where=where)

    field, operator, value = where
    if not isinstance(field, str) or not field:
        raise _unsupported(provider, f"Predicate field must be a non-empty string, got {field!r}", where=where)

    return field, operator, value


def translate_operator(provider: str, operator: str) -> str:
    """Map an abstract operator onto the provider's native spelling."""
    table = OPERATOR_TABLES.get(provider)
    if table is None:
        raise _unsupported(provider, f"Provider '{provider}' has no query translation", operator=operator)

    try:
        return table[operator]
    except (KeyError, TypeError):
        raise _unsupported(
            provider,
            f"Operator {operator!r} is not supported; expected one of {', '.join(SUPPORTED_OPERATORS)}",
            operator=operator,
        ) from None


def format_sql_literal(provider: str, value: Any) -> str:
    """Render a value as a Cosmos SQL literal.

    Strings are quoted and escaped, ints and finite floats are emitted bare.
    Every other type is rejected rather than guessed at.
    """
    if isinstance(value, bool):
        raise _unsupported(provider, "Boolean values are not supported query literals", value=value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise _unsupported(provider, f"Non-finite number {value!r} is not a query literal", value=value)
        return repr(value)

    raise _unsupported(
        provider,
        f"Values of type {type(value).__name__} are not supported query literals",
        value=value,
    )


def to_firestore_filter(where: Sequence[Any]) -> FieldFilter:
    field, operator, value = parse_predicate("firebase", where)
    return FieldFilter(field, translate_operator("firebase", operator), value)


def to_postgrest_filter(where: Sequence[Any]) -> Tuple[str, str, Any]:
    """Return ``(builder_method, field, value)``, e.g. ``("gte", "fine", 100)``."""
    field, operator, value = parse_predicate("supabase", where)
    return translate_operator("supabase", operator), field, value


def to_cosmos_condition(where: Sequence[Any]) -> str:
    """Return a SQL condition such as ``c["status"] = "open"``."""
    field, operator, value = parse_predicate("azure", where)
    sql_operator = translate_operator("azure", operator)
    return f"c[{json.dumps(field)}] {sql_operator} {format_sql_literal('azure', value)}"


_TRANSLATORS = {
    "firebase": to_firestore_filter,
    "supabase": to_postgrest_filter,
    "azure": to_cosmos_condition,
}


def translate_predicate(provider: str, where: Sequence[Any]) -> Any:
    """Translate ``where`` into the native filter construct of ``provider``."""
    translator = _TRANSLATORS.get(provider)
    if translator is None:
        raise _unsupported(provider, f"Provider '{provider}' has no query translation", where=where)
    return translator(where)


def apply_postgrest_filter(query, where: Sequence[Any]):
    """Apply a predicate to a PostgREST request builder."""
    method, field, value = to_postgrest_filter(where)
    return getattr(query, method)(field, value)


def build_cosmos_query(where=None) -> str:
    """Full ``SELECT`` statement for a container, optionally filtered."""
    query = "SELECT * FROM c"
    if where is not None:
        query += f" WHERE {to_cosmos_condition(where)}"
    return query
