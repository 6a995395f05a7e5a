"""Grid filter model: parsing, display translation and SQL predicates.

The grid sends its filter model as a dict keyed by column. Each entry is
parsed once into one of four variants and every consumer dispatches on the
variant with ``match``:

- ``SingleCondition``: ``{"filterType": "number", "type": "equals", "filter": 5}``
- ``CombinedCondition``: ``{"operator": "OR", "conditions": [...]}``
- ``SetFilter``: ``{"filterType": "set", "values": ["a", "b"]}``
- ``MultiFilter``: ``{"filterType": "multi", "filterModels": [..., None]}``

Entries the parser does not recognise are dropped. A filter the backend
cannot express never fails the page; it just contributes no predicate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Union, assert_never

from column_types import (
    ColumnMeta,
    coerce_value,
    display_value,
    quote_ident,
    sql_literal,
)
from log import debug, warn

CONDITION_FILTER_TYPES = {"text", "number", "date"}

# Operators shown for a single condition.
DISPLAY_OPERATORS: dict[str, str] = {
    "equals": "=",
    "greaterThanOrEqual": ">=",
    "lessThan": "<",
}

COMPARISON_OPERATORS: dict[str, str] = {
    "equals": "=",
    "notEqual": "!=",
    "greaterThan": ">",
    "greaterThanOrEqual": ">=",
    "lessThan": "<",
    "lessThanOrEqual": "<=",
}

LIKE_PATTERNS: dict[str, tuple[str, str]] = {
    "contains": ("ILIKE", "%{}%"),
    "notContains": ("NOT ILIKE", "%{}%"),
    "startsWith": ("ILIKE", "{}%"),
    "endsWith": ("ILIKE", "%{}"),
}


@dataclass(frozen=True)
class SingleCondition:
    type: str
    filter: Any = None
    filter_to: Any = None
    filter_type: str | None = None
    kind: Literal["single"] = field(default="single", init=False)


@dataclass(frozen=True)
class CombinedCondition:
    conditions: tuple[SingleCondition, ...]
    operator: str = "AND"
    filter_type: str | None = None
    kind: Literal["combined"] = field(default="combined", init=False)


@dataclass(frozen=True)
class SetFilter:
    values: tuple[Any, ...] = ()
    kind: Literal["set"] = field(default="set", init=False)


@dataclass(frozen=True)
class MultiFilter:
    filter_models: tuple[SingleCondition | CombinedCondition | SetFilter, ...] = ()
    kind: Literal["multi"] = field(default="multi", init=False)


FilterSpec = Union[SingleCondition, CombinedCondition, SetFilter, MultiFilter]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_condition(raw: Mapping[str, Any]) -> SingleCondition | None:
    cond_type = raw.get("type")
    if not isinstance(cond_type, str) or not cond_type:
        return None
    # Date filters carry dateFrom/dateTo instead of filter/filterTo.
    return SingleCondition(
        type=cond_type,
        filter=raw.get("filter", raw.get("dateFrom")),
        filter_to=raw.get("filterTo", raw.get("dateTo")),
        filter_type=raw.get("filterType"),
    )


def _parse_combined(raw: Mapping[str, Any]) -> CombinedCondition:
    raw_conditions = raw.get("conditions")
    if raw_conditions is None:
        # Older grid versions send condition1/condition2.
        raw_conditions = [raw.get("condition1"), raw.get("condition2")]

    conditions: list[SingleCondition] = []
    for item in raw_conditions or []:
        if not isinstance(item, Mapping):
            continue
        cond = _parse_condition(item)
        if cond is not None:
            conditions.append(cond)

    operator = raw.get("operator")
    return CombinedCondition(
        conditions=tuple(conditions),
        operator=operator if isinstance(operator, str) and operator else "AND",
        filter_type=raw.get("filterType"),
    )


def _parse_set(raw: Mapping[str, Any]) -> SetFilter:
    values = raw.get("values")
    if not isinstance(values, (list, tuple)):
        return SetFilter()
    return SetFilter(values=tuple(values))


def _parse_multi_entry(
    raw: Any,
) -> SingleCondition | CombinedCondition | SetFilter | None:
    if raw is None or not isinstance(raw, Mapping):
        return None
    filter_type = raw.get("filterType")
    if filter_type in CONDITION_FILTER_TYPES:
        if "conditions" in raw or "condition1" in raw:
            return _parse_combined(raw)
        return _parse_condition(raw)
    if filter_type == "set":
        return _parse_set(raw)
    debug(f"Skipping multi-filter entry with filterType {filter_type!r}")
    return None


def parse_filter_spec(raw: Any) -> FilterSpec | None:
    """Classify one column's filter entry, or return ``None`` if unusable."""
    if not isinstance(raw, Mapping):
        return None
    if raw.get("filterType") == "multi":
        entries = (_parse_multi_entry(m) for m in raw.get("filterModels") or [])
        return MultiFilter(filter_models=tuple(e for e in entries if e is not None))
    if "conditions" in raw or "condition1" in raw:
        return _parse_combined(raw)
    if "type" in raw:
        return _parse_condition(raw)
    if "values" in raw or raw.get("filterType") == "set":
        return _parse_set(raw)
    return None


def parse_filter_model(
    filter_model: Mapping[str, Any] | None,
) -> list[tuple[str, FilterSpec]]:
    """Parse a whole filter model, keeping key order."""
    if not filter_model:
        return []
    parsed: list[tuple[str, FilterSpec]] = []
    for key, raw in filter_model.items():
        spec = parse_filter_spec(raw)
        if spec is None:
            debug(f"Ignoring unsupported filter for column {key!r}")
            continue
        parsed.append((key, spec))
    return parsed


# ---------------------------------------------------------------------------
# Display translation
# ---------------------------------------------------------------------------


def _describe_single(
    key: str, cond: SingleCondition, render: Callable[[Any], str], quoted: bool
) -> str | None:
    if cond.type in DISPLAY_OPERATORS:
        return f"{key} {DISPLAY_OPERATORS[cond.type]} {render(cond.filter)}"
    if cond.type in ("contains", "notContains"):
        keyword = "LIKE" if cond.type == "contains" else "NOT LIKE"
        text = display_value(cond.filter)
        if quoted:
            return f"{key} {keyword} '%" + text.replace("'", "''") + "%'"
        return f"{key} {keyword} %{text}%"
    debug(f"Filter type {cond.type!r} on {key!r} is not shown")
    return None


def _describe_combined(
    key: str, combined: CombinedCondition, render: Callable[[Any], str]
) -> str | None:
    parts = [
        f"{key} {DISPLAY_OPERATORS.get(cond.type, '=')} {render(cond.filter)}"
        for cond in combined.conditions
    ]
    if not parts:
        return None
    return f" {combined.operator} ".join(parts)


def _describe_set(
    key: str, set_filter: SetFilter, render: Callable[[Any], str], quoted: bool
) -> str | None:
    values = set_filter.values
    if not values:
        return None
    if len(values) == 1:
        return f"{key} = {render(values[0])}"
    joined = ", ".join(render(v) for v in values)
    return f"{key} IN ({joined})" if quoted else f"{key} IN {joined}"


def translate_filter_model(
    filter_model: Mapping[str, Any] | None,
    column_types: Mapping[str, str] | None = None,
) -> list[str]:
    """Turn a filter model into readable predicates, one per filtered column.

    Multi-filter wrappers contribute one entry per active sub-filter.
    Values are shown bare (``region = EU``) unless ``column_types`` maps the
    column to an app type, in which case text and dates are rendered as
    quoted SQL literals (``region = 'EU'``).
    """
    predicates: list[str] = []

    for key, spec in parse_filter_model(filter_model):
        app_type = (column_types or {}).get(key)
        quoted = app_type is not None

        def render(value: Any, _app_type: str | None = app_type) -> str:
            if _app_type is None:
                return display_value(value)
            return sql_literal(value, _app_type)

        def describe(
            item: SingleCondition | CombinedCondition | SetFilter,
        ) -> str | None:
            match item:
                case SingleCondition():
                    return _describe_single(key, item, render, quoted)
                case CombinedCondition():
                    return _describe_combined(key, item, render)
                case SetFilter():
                    return _describe_set(key, item, render, quoted)
                case _:
                    assert_never(item)

        match spec:
            case MultiFilter():
                for sub in spec.filter_models:
                    text = describe(sub)
                    if text:
                        predicates.append(text)
            case SingleCondition() | CombinedCondition() | SetFilter():
                text = describe(spec)
                if text:
                    predicates.append(text)
            case _:
                assert_never(spec)

    return predicates


# ---------------------------------------------------------------------------
# SQL predicates
# ---------------------------------------------------------------------------


def _escape_like(value: str) -> str:
    value = value.replace("\\", "\\\\")
    return value.replace("%", "\\%").replace("_", "\\_")


def _condition_sql(
    col: str, cond: SingleCondition, app_type: str
) -> tuple[str, list[Any]] | None:
    col_sql = quote_ident(col)

    if cond.type == "blank":
        if app_type == "string":
            return f"({col_sql} IS NULL OR {col_sql} = '')", []
        return f"{col_sql} IS NULL", []
    if cond.type == "notBlank":
        if app_type == "string":
            return f"({col_sql} IS NOT NULL AND {col_sql} != '')", []
        return f"{col_sql} IS NOT NULL", []

    if cond.type in LIKE_PATTERNS:
        if cond.filter is None:
            return None
        keyword, pattern = LIKE_PATTERNS[cond.type]
        target = col_sql if app_type == "string" else f"CAST({col_sql} AS VARCHAR)"
        value = pattern.format(_escape_like(display_value(cond.filter)))
        return f"{target} {keyword} ? ESCAPE '\\'", [value]

    try:
        if cond.type in COMPARISON_OPERATORS:
            value = coerce_value(cond.filter, app_type, col)
            return f"{col_sql} {COMPARISON_OPERATORS[cond.type]} ?", [value]
        if cond.type == "inRange":
            low = coerce_value(cond.filter, app_type, col)
            high = coerce_value(cond.filter_to, app_type, col)
            return f"{col_sql} BETWEEN ? AND ?", [low, high]
    except ValueError as exc:
        warn(f"Skipping filter on {col!r}: {exc}")
        return None

    debug(f"Unsupported filter type {cond.type!r} on {col!r}")
    return None


def _combined_sql(
    col: str, combined: CombinedCondition, app_type: str
) -> tuple[str, list[Any]] | None:
    joiner = " OR " if combined.operator.upper() == "OR" else " AND "
    parts: list[str] = []
    params: list[Any] = []
    for cond in combined.conditions:
        built = _condition_sql(col, cond, app_type)
        if built is None:
            continue
        parts.append(built[0])
        params.extend(built[1])
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0], params
    return "(" + joiner.join(parts) + ")", params


def _set_sql(
    col: str, set_filter: SetFilter, app_type: str
) -> tuple[str, list[Any]] | None:
    if not set_filter.values:
        return None
    col_sql = quote_ident(col)
    params: list[Any] = []
    has_null = False
    for value in set_filter.values:
        if value is None:
            has_null = True
            continue
        try:
            params.append(coerce_value(value, app_type, col))
        except ValueError as exc:
            warn(f"Dropping set value on {col!r}: {exc}")

    parts: list[str] = []
    if params:
        placeholders = ", ".join("?" for _ in params)
        parts.append(f"{col_sql} IN ({placeholders})")
    if has_null:
        parts.append(f"{col_sql} IS NULL")
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0], params
    return "(" + " OR ".join(parts) + ")", params


def build_filter_predicates(
    filter_model: Mapping[str, Any] | None,
    col_meta: ColumnMeta,
) -> tuple[list[str], list[Any]]:
    """Build parameterised predicates for a filter model.

    Returns the predicate strings (to be ANDed) and their bound values in
    placeholder order. Filters on columns missing from ``col_meta`` are
    skipped.
    """
    clauses: list[str] = []
    params: list[Any] = []

    def add(
        col: str,
        item: SingleCondition | CombinedCondition | SetFilter,
        app_type: str,
    ) -> None:
        match item:
            case SingleCondition():
                built = _condition_sql(col, item, app_type)
            case CombinedCondition():
                built = _combined_sql(col, item, app_type)
            case SetFilter():
                built = _set_sql(col, item, app_type)
            case _:
                assert_never(item)
        if built is not None:
            clauses.append(built[0])
            params.extend(built[1])

    for col, spec in parse_filter_model(filter_model):
        if col not in col_meta:
            warn(f"Ignoring filter on unknown column {col!r}")
            continue
        app_type = col_meta[col]["app_type"]
        match spec:
            case MultiFilter():
                for sub in spec.filter_models:
                    add(col, sub, app_type)
            case SingleCondition() | CombinedCondition() | SetFilter():
                add(col, spec, app_type)
            case _:
                assert_never(spec)

    return clauses, params
