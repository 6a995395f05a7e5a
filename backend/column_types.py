"""DuckDB column types, identifier quoting and value coercion."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

# column name -> {"duck_type": ..., "app_type": ...}
ColumnMeta = dict[str, dict[str, str]]

DUCKDB_TYPE_MAP: dict[str, str] = {
    "VARCHAR": "string",
    "BOOLEAN": "boolean",
    "BIGINT": "integer",
    "INTEGER": "integer",
    "SMALLINT": "integer",
    "TINYINT": "integer",
    "HUGEINT": "integer",
    "UBIGINT": "integer",
    "UINTEGER": "integer",
    "USMALLINT": "integer",
    "UTINYINT": "integer",
    "DOUBLE": "float",
    "FLOAT": "float",
    "DECIMAL": "float",
    "DATE": "date",
    "TIMESTAMP": "timestamp",
    "TIMESTAMP_S": "timestamp",
    "TIMESTAMP_MS": "timestamp",
    "TIMESTAMP_NS": "timestamp",
    "TIMESTAMP WITH TIME ZONE": "timestamp",
    "TIMESTAMPTZ": "timestamp",
    "TIME": "string",
    "INTERVAL": "string",
    "BLOB": "string",
}

NUMERIC_TYPES = {"integer", "float"}

_PLAIN_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Words that cannot appear unquoted as a column name.
_RESERVED_WORDS = {
    "all", "and", "any", "as", "asc", "between", "by", "case", "cast",
    "check", "column", "create", "default", "delete", "desc", "distinct",
    "else", "end", "except", "false", "from", "group", "having", "in",
    "insert", "intersect", "into", "is", "join", "like", "limit", "not",
    "null", "offset", "on", "or", "order", "select", "set", "table", "then",
    "to", "true", "union", "unique", "update", "using", "values", "when",
    "where", "window", "with",
}


def map_duckdb_type(duckdb_type: str) -> str:
    """Map a DuckDB type string to our simplified type system."""
    upper = duckdb_type.upper()
    base = upper.split("(")[0].strip()
    return DUCKDB_TYPE_MAP.get(base, "string")


def quote_ident(ident: str) -> str:
    """Quote an identifier unless it is a plain, non-reserved name."""
    if _PLAIN_IDENT_RE.match(ident) and ident.lower() not in _RESERVED_WORDS:
        return ident
    return '"' + ident.replace('"', '""') + '"'


def coerce_value(value: Any, app_type: str, col: str) -> Any:
    """Convert a raw request value to the Python type the column expects.

    Raises ``ValueError`` with a column-specific message when the value
    cannot be converted.
    """
    if value is None:
        raise ValueError(f"Value is required for column '{col}'")

    if app_type == "integer":
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Invalid integer value for column '{col}': {value}"
            ) from exc

    if app_type == "float":
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Invalid float value for column '{col}': {value}"
            ) from exc

    if app_type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"1", "true", "t", "yes", "y"}:
                return True
            if lowered in {"0", "false", "f", "no", "n"}:
                return False
        raise ValueError(f"Invalid boolean value for column '{col}': {value}")

    if app_type == "date":
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str):
            # Date filters arrive as "YYYY-MM-DD hh:mm:ss"; keep the date part.
            text = value.strip()
            try:
                return date.fromisoformat(text[:10]).isoformat()
            except ValueError as exc:
                raise ValueError(
                    f"Invalid date value for column '{col}': {value}. Expected YYYY-MM-DD."
                ) from exc
        raise ValueError(f"Invalid date value for column '{col}': {value}")

    if app_type == "timestamp":
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, date):
            return datetime.combine(value, datetime.min.time()).isoformat(sep=" ")
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip()).isoformat(sep=" ")
            except ValueError as exc:
                raise ValueError(
                    f"Invalid timestamp value for column '{col}': {value}. "
                    "Expected YYYY-MM-DD[ hh:mm:ss]."
                ) from exc
        raise ValueError(f"Invalid timestamp value for column '{col}': {value}")

    return str(value)


def sql_literal(value: Any, app_type: str) -> str:
    """Render a value as a SQL literal for display, quoting text and temporal values."""
    if value is None:
        return "NULL"
    if app_type in {"string", "date", "timestamp"}:
        return "'" + str(value).replace("'", "''") + "'"
    return display_value(value)


def display_value(value: Any) -> str:
    """Render a value the way the grid shows it: 5.0 -> "5", None -> "null"."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
