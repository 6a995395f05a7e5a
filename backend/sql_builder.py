"""SQL clause builders for server-side row model requests.

Each grid "get rows" request becomes one statement:

    SELECT ... FROM <table> [WHERE ...] [GROUP BY <col>] ORDER BY ... LIMIT n+1 OFFSET s

Rows are grouped one level at a time. While the user has expanded fewer
levels than there are row-group columns, the query returns the distinct
values of the next group column; once every level is expanded it returns
leaf rows restricted to the expanded path.
"""

from __future__ import annotations

from typing import Any

from column_types import NUMERIC_TYPES, ColumnMeta, coerce_value, quote_ident
from filter_model import build_filter_predicates
from grid_request import RowsRequest
from log import debug

CHILD_COUNT_COLUMN = "__childCount"

AGGREGATE_FUNCTIONS: dict[str, str] = {
    "sum": "SUM",
    "avg": "AVG",
    "min": "MIN",
    "max": "MAX",
    "count": "COUNT",
    "first": "FIRST",
    "last": "LAST",
}


class InvalidGroupingState(ValueError):
    """The expansion path is deeper than the configured row-group columns."""


def build_limit(request: RowsRequest) -> str:
    """Return ``" LIMIT <pageSize + 1> OFFSET <startRow>"``.

    The extra row lets the caller tell whether more rows follow the window
    without issuing a separate count.
    """
    return f" LIMIT {request.page_size + 1} OFFSET {request.start_row}"


def group_column(request: RowsRequest) -> str | None:
    """Return the row-group column queried at the current depth, if any."""
    group_cols = request.rowGroupCols
    depth = len(request.groupKeys)
    if depth > len(group_cols):
        raise InvalidGroupingState(
            f"Invalid grouping state: {depth} group keys for "
            f"{len(group_cols)} row group columns"
        )
    if not group_cols or depth == len(group_cols):
        return None
    return group_cols[depth].field


def build_group_by(request: RowsRequest) -> str:
    """Return ``"GROUP BY <next group column>"`` or ``""`` at leaf level."""
    column = group_column(request)
    if column is None:
        return ""
    return f"GROUP BY {quote_ident(column)}"


def build_group_key_predicates(
    request: RowsRequest, col_meta: ColumnMeta
) -> tuple[list[str], list[Any]]:
    """Restrict rows to the expanded group path, one predicate per level."""
    if len(request.groupKeys) > len(request.rowGroupCols):
        raise InvalidGroupingState(
            f"Invalid grouping state: {len(request.groupKeys)} group keys for "
            f"{len(request.rowGroupCols)} row group columns"
        )

    clauses: list[str] = []
    params: list[Any] = []
    for col_ref, key in zip(request.rowGroupCols, request.groupKeys):
        col = col_ref.field
        if col not in col_meta:
            raise ValueError(f"Invalid row group column: {col}")
        col_sql = quote_ident(col)
        if key is None:
            clauses.append(f"{col_sql} IS NULL")
            continue
        clauses.append(f"{col_sql} = ?")
        params.append(coerce_value(key, col_meta[col]["app_type"], col))
    return clauses, params


def build_where(request: RowsRequest, col_meta: ColumnMeta) -> tuple[str, list[Any]]:
    """Combine group-path and filter predicates into one ``WHERE`` clause."""
    group_clauses, group_params = build_group_key_predicates(request, col_meta)
    filter_clauses, filter_params = build_filter_predicates(
        request.filterModel, col_meta
    )
    clauses = group_clauses + filter_clauses
    if not clauses:
        return "", []
    return f"WHERE {' AND '.join(clauses)}", group_params + filter_params


def _aggregations(request: RowsRequest, col_meta: ColumnMeta) -> list[tuple[str, str]]:
    """Return ``(column, SQL function)`` pairs for usable value columns."""
    out: list[tuple[str, str]] = []
    for value_col in request.valueCols:
        col = value_col.field
        agg = (value_col.aggFunc or "sum").lower()
        if col not in col_meta or agg not in AGGREGATE_FUNCTIONS:
            debug(f"Skipping aggregation {agg!r} on {col!r}")
            continue
        if agg in {"sum", "avg"} and col_meta[col]["app_type"] not in NUMERIC_TYPES:
            debug(f"Skipping {agg!r} on non-numeric column {col!r}")
            continue
        out.append((col, AGGREGATE_FUNCTIONS[agg]))
    return out


def build_select(request: RowsRequest, col_meta: ColumnMeta) -> str:
    column = group_column(request)
    if column is None:
        return "SELECT *"
    if column not in col_meta:
        raise ValueError(f"Invalid row group column: {column}")

    parts = [quote_ident(column), f"COUNT(*) AS {quote_ident(CHILD_COUNT_COLUMN)}"]
    for col, func in _aggregations(request, col_meta):
        if col == column:
            continue
        parts.append(f"{func}({quote_ident(col)}) AS {quote_ident(col)}")
    return "SELECT " + ", ".join(parts)


def build_order_by(request: RowsRequest, col_meta: ColumnMeta) -> str:
    """Build ``ORDER BY`` from the sort model.

    At a group level only the group column and aggregated columns can be
    sorted on. Without a usable sort entry the group column, or ``rowid``
    for leaf rows, keeps paging stable.
    """
    column = group_column(request)
    if column is None:
        sortable = set(col_meta)
    else:
        sortable = {column} | {col for col, _ in _aggregations(request, col_meta)}

    parts = [
        f"{quote_ident(item.colId)} {item.sort.upper()} NULLS LAST"
        for item in request.sortModel
        if item.colId in sortable
    ]
    if not parts:
        if column is None:
            return "ORDER BY rowid ASC"
        return f"ORDER BY {quote_ident(column)} ASC NULLS LAST"
    if column is None:
        parts.append("rowid ASC")
    return "ORDER BY " + ", ".join(parts)


def build_rows_query(
    table: str, request: RowsRequest, col_meta: ColumnMeta
) -> tuple[str, list[Any]]:
    """Assemble the full statement for one request and its bound values."""
    where_sql, params = build_where(request, col_meta)
    parts = [
        build_select(request, col_meta),
        f"FROM {quote_ident(table)}",
        where_sql,
        build_group_by(request),
        build_order_by(request, col_meta),
    ]
    sql = " ".join(p for p in parts if p) + build_limit(request)
    return sql, params


def build_count_query(
    table: str, request: RowsRequest, col_meta: ColumnMeta
) -> tuple[str, list[Any]]:
    where_sql, params = build_where(request, col_meta)
    sql = f"SELECT COUNT(*) FROM {quote_ident(table)}"
    if where_sql:
        sql += f" {where_sql}"
    return sql, params
