"""DuckDB engine: load files, schema, server-side row model queries, row edits."""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

import duckdb
import pandas as pd

from column_types import ColumnMeta, coerce_value, map_duckdb_type, quote_ident
from filter_model import translate_filter_model
from grid_request import RowsRequest
from log import debug, info
from sql_builder import build_count_query, build_rows_query, group_column

SUPPORTED_FORMATS = {"csv", "parquet", "excel"}
RECORD_ID_COLUMN = "id"


class Engine(ABC):
    @abstractmethod
    def load_file(self, path: str, name: str, file_format: str = "csv") -> str:
        """Load a file into the engine. Returns dataset_id."""

    @abstractmethod
    def get_schema(self, dataset_id: str) -> dict:
        """Get column names, types, null counts, row count."""

    @abstractmethod
    def get_rows(self, dataset_id: str, request: RowsRequest) -> dict:
        """Answer one server-side row model request."""

    @abstractmethod
    def count_rows(
        self, dataset_id: str, filter_model: Mapping[str, Any] | None
    ) -> dict:
        """Count all rows and the rows matching a filter model."""

    @abstractmethod
    def describe_filters(
        self, dataset_id: str, filter_model: Mapping[str, Any] | None
    ) -> list[str]:
        """Readable predicate list for the active filter model."""

    @abstractmethod
    def run_query(self, dataset_id: str, sql: str) -> dict:
        """Execute arbitrary SQL against a dataset. Returns columns + rows."""

    @abstractmethod
    def create_record(self, dataset_id: str, values: Mapping[str, Any]) -> dict:
        pass

    @abstractmethod
    def update_record(
        self, dataset_id: str, record_id: Any, values: Mapping[str, Any]
    ) -> dict:
        pass

    @abstractmethod
    def delete_record(self, dataset_id: str, record_id: Any) -> dict:
        pass

    @abstractmethod
    def drop_dataset(self, dataset_id: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class DuckDBEngine(Engine):
    def __init__(self, database: str = ":memory:") -> None:
        self.conn = duckdb.connect(database)
        self.datasets: dict[str, str] = {}  # id -> table_name

    @contextmanager
    def session(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield a connection handle of its own and close it on exit."""
        cursor = self.conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    def load_file(self, path: str, name: str, file_format: str = "csv") -> str:
        if file_format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported file format: {file_format}")

        dataset_id = uuid.uuid4().hex[:12]
        table_name = f"ds_{dataset_id}"
        table_sql = quote_ident(table_name)

        with self.session() as conn:
            if file_format == "csv":
                conn.execute(
                    f"CREATE TABLE {table_sql} AS SELECT * FROM read_csv_auto(?, header=true, all_varchar=false)",
                    [path],
                )
            elif file_format == "parquet":
                conn.execute(
                    f"CREATE TABLE {table_sql} AS SELECT * FROM read_parquet(?)",
                    [path],
                )
            else:
                frame = pd.read_excel(path)
                conn.register("excel_import", frame)
                try:
                    conn.execute(
                        f"CREATE TABLE {table_sql} AS SELECT * FROM excel_import"
                    )
                finally:
                    conn.unregister("excel_import")

        self.datasets[dataset_id] = table_name
        info(f"Loaded {name} ({file_format}) as {table_name}")
        return dataset_id

    def get_schema(self, dataset_id: str) -> dict:
        table = self._get_table(dataset_id)
        table_sql = quote_ident(table)

        with self.session() as conn:
            col_meta = self._get_column_meta(conn, table)
            row_count = conn.execute(f"SELECT COUNT(*) FROM {table_sql}").fetchone()[0]

            columns = []
            for col_name, meta in col_meta.items():
                col_sql = quote_ident(col_name)
                null_count = conn.execute(
                    f"SELECT COUNT(*) FILTER (WHERE {col_sql} IS NULL) FROM {table_sql}"
                ).fetchone()[0]
                columns.append(
                    {
                        "name": col_name,
                        "type": meta["app_type"],
                        "duckType": meta["duck_type"],
                        "nullCount": null_count,
                    }
                )

        return {"columns": columns, "rowCount": row_count}

    def get_rows(self, dataset_id: str, request: RowsRequest) -> dict:
        table = self._get_table(dataset_id)

        with self.session() as conn:
            col_meta = self._get_column_meta(conn, table)
            sql, params = build_rows_query(table, request, col_meta)
            debug(f"Rows query: {sql} params={params}")
            result = conn.execute(sql, params)
            col_names = [desc[0] for desc in result.description]
            raw_rows = result.fetchall()

        # One row past the window was requested to detect the end of data.
        has_more = len(raw_rows) > request.page_size
        page_rows = raw_rows[: request.page_size]
        rows = [self._row_dict(col_names, raw) for raw in page_rows]

        return {
            "rowData": rows,
            "lastRow": None if has_more else request.start_row + len(rows),
            "groupColumn": group_column(request),
            "sql": sql,
        }

    def count_rows(
        self, dataset_id: str, filter_model: Mapping[str, Any] | None
    ) -> dict:
        table = self._get_table(dataset_id)
        request = RowsRequest(filterModel=dict(filter_model or {}))

        with self.session() as conn:
            col_meta = self._get_column_meta(conn, table)
            total_rows = conn.execute(
                f"SELECT COUNT(*) FROM {quote_ident(table)}"
            ).fetchone()[0]
            sql, params = build_count_query(table, request, col_meta)
            filtered_rows = conn.execute(sql, params).fetchone()[0]

        return {"totalRows": total_rows, "filteredRows": filtered_rows}

    def describe_filters(
        self, dataset_id: str, filter_model: Mapping[str, Any] | None
    ) -> list[str]:
        table = self._get_table(dataset_id)
        with self.session() as conn:
            col_meta = self._get_column_meta(conn, table)
        column_types = {name: meta["app_type"] for name, meta in col_meta.items()}
        return translate_filter_model(filter_model, column_types)

    def run_query(self, dataset_id: str, sql: str) -> dict:
        table = self._get_table(dataset_id)

        start = time.time()
        with self.session() as conn:
            # The dataset is exposed to the statement as the view "data".
            conn.execute(
                f"CREATE OR REPLACE TEMP VIEW data AS SELECT * FROM {quote_ident(table)}"
            )
            try:
                result = conn.execute(sql)
                if result.description is None:
                    cols: list[str] = []
                    raw_rows: list[Any] = []
                else:
                    cols = [desc[0] for desc in result.description]
                    raw_rows = result.fetchall()
            finally:
                conn.execute("DROP VIEW IF EXISTS data")

        elapsed = round(time.time() - start, 4)
        debug(f"Query on {table} took {elapsed}s: {sql}")

        rows = [self._row_dict(cols, raw) for raw in raw_rows]
        return {
            "columns": cols,
            "rows": rows,
            "rowCount": len(rows),
            "executionTime": elapsed,
        }

    def create_record(self, dataset_id: str, values: Mapping[str, Any]) -> dict:
        table = self._get_table(dataset_id)
        if not values:
            raise ValueError("Record values are required")

        with self.session() as conn:
            col_meta = self._get_column_meta(conn, table)
            columns, params = self._coerce_record(values, col_meta)
            placeholders = ", ".join("?" for _ in columns)
            conn.execute(
                f"INSERT INTO {quote_ident(table)} "
                f"({', '.join(quote_ident(c) for c in columns)}) VALUES ({placeholders})",
                params,
            )
        return {"success": True}

    def update_record(
        self, dataset_id: str, record_id: Any, values: Mapping[str, Any]
    ) -> dict:
        table = self._get_table(dataset_id)
        if not values:
            raise ValueError("Record values are required")

        with self.session() as conn:
            col_meta = self._get_column_meta(conn, table)
            id_value = self._coerce_record_id(record_id, col_meta)
            columns, params = self._coerce_record(values, col_meta)
            assignments = ", ".join(f"{quote_ident(c)} = ?" for c in columns)
            updated = conn.execute(
                f"UPDATE {quote_ident(table)} SET {assignments} "
                f"WHERE {quote_ident(RECORD_ID_COLUMN)} = ?",
                [*params, id_value],
            ).fetchone()[0]

        if not updated:
            raise ValueError(f"Record not found: {record_id}")
        return {"success": True, "updated": updated}

    def delete_record(self, dataset_id: str, record_id: Any) -> dict:
        table = self._get_table(dataset_id)

        with self.session() as conn:
            col_meta = self._get_column_meta(conn, table)
            id_value = self._coerce_record_id(record_id, col_meta)
            deleted = conn.execute(
                f"DELETE FROM {quote_ident(table)} "
                f"WHERE {quote_ident(RECORD_ID_COLUMN)} = ?",
                [id_value],
            ).fetchone()[0]

        if not deleted:
            raise ValueError(f"Record not found: {record_id}")
        return {"success": True, "deleted": deleted}

    def drop_dataset(self, dataset_id: str) -> None:
        table = self._get_table(dataset_id)
        with self.session() as conn:
            conn.execute(f"DROP TABLE IF EXISTS {quote_ident(table)}")
        del self.datasets[dataset_id]
        info(f"Dropped {table}")

    def close(self) -> None:
        self.conn.close()

    def _get_table(self, dataset_id: str) -> str:
        table = self.datasets.get(dataset_id)
        if not table:
            raise ValueError(f"Dataset not found: {dataset_id}")
        return table

    def _get_column_meta(
        self, conn: duckdb.DuckDBPyConnection, table: str
    ) -> ColumnMeta:
        rows = conn.execute(f"PRAGMA table_info({quote_ident(table)})").fetchall()
        meta: ColumnMeta = {}
        for _, name, duck_type, *_ in rows:
            meta[name] = {
                "duck_type": duck_type,
                "app_type": map_duckdb_type(duck_type),
            }
        return meta

    def _coerce_record(
        self, values: Mapping[str, Any], col_meta: ColumnMeta
    ) -> tuple[list[str], list[Any]]:
        columns: list[str] = []
        params: list[Any] = []
        for col, raw in values.items():
            if col not in col_meta:
                raise ValueError(f"Invalid column: {col}")
            columns.append(col)
            if raw is None:
                params.append(None)
            else:
                params.append(coerce_value(raw, col_meta[col]["app_type"], col))
        return columns, params

    def _coerce_record_id(self, record_id: Any, col_meta: ColumnMeta) -> Any:
        if RECORD_ID_COLUMN not in col_meta:
            raise ValueError(f"Table has no '{RECORD_ID_COLUMN}' column")
        return coerce_value(
            record_id, col_meta[RECORD_ID_COLUMN]["app_type"], RECORD_ID_COLUMN
        )

    def _row_dict(self, col_names: list[str], raw: tuple) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for idx, col in enumerate(col_names):
            val = raw[idx]
            if val is not None and not isinstance(val, (str, int, float, bool)):
                val = str(val)
            row[col] = val
        return row
