from __future__ import annotations

from pathlib import Path
import sys

import duckdb
import pytest

from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import app as app_module

client = TestClient(app_module.app)

SALES_CSV = (
    "id,region,product,amount,order_date\n"
    "1,EU,apple,10.5,2024-01-05\n"
    "2,EU,pear,20,2024-01-06\n"
    "3,US,apple,5,2024-02-01\n"
    "4,US,plum,7.5,2024-02-03\n"
    "5,APAC,apple,12,2024-03-10\n"
)


@pytest.fixture
def dataset_id(tmp_path: Path) -> str:
    csv_path = tmp_path / "sales.csv"
    csv_path.write_text(SALES_CSV, encoding="utf-8")
    return app_module.engine.load_file(str(csv_path), "sales.csv")


def _rows(dataset_id: str, **request) -> dict:
    resp = client.post(f"/api/datasets/{dataset_id}/rows", json=request)
    assert resp.status_code == 200, resp.text
    return resp.json()


# ── Upload ──


def test_upload_rejects_unsafe_filename() -> None:
    csv_bytes = b"a,b\n1,2\n"
    resp = client.post(
        "/api/datasets/upload",
        files={"file": ("../evil.csv", csv_bytes, "text/csv")},
    )
    assert resp.status_code == 400
    assert "Invalid filename" in resp.text


def test_upload_rejects_unknown_suffix() -> None:
    resp = client.post(
        "/api/datasets/upload",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 400
    assert "Unsupported file format" in resp.text


def test_upload_accepts_csv() -> None:
    resp = client.post(
        "/api/datasets/upload",
        files={"file": ("sales.csv", SALES_CSV.encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["name"] == "sales.csv"
    assert payload["rowCount"] == 5
    types = {c["name"]: c["type"] for c in payload["columns"]}
    assert types["amount"] == "float"
    assert types["order_date"] == "date"


def test_upload_accepts_parquet(tmp_path: Path) -> None:
    parquet_path = tmp_path / "tiny.parquet"
    conn = duckdb.connect()
    conn.execute(
        "COPY (SELECT 1 AS id, 'a' AS label UNION ALL SELECT 2 AS id, 'b' AS label) TO ? (FORMAT PARQUET)",
        [str(parquet_path)],
    )
    conn.close()

    resp = client.post(
        "/api/datasets/upload",
        files={
            "file": (
                "tiny.parquet",
                parquet_path.read_bytes(),
                "application/octet-stream",
            )
        },
    )
    assert resp.status_code == 200
    assert resp.json()["rowCount"] == 2


# ── Rows ──


def test_rows_default_window_returns_all_rows(dataset_id: str) -> None:
    payload = _rows(dataset_id)
    assert [r["id"] for r in payload["rowData"]] == [1, 2, 3, 4, 5]
    assert payload["lastRow"] == 5
    assert payload["groupColumn"] is None
    assert payload["sql"].endswith("LIMIT 101 OFFSET 0")


def test_rows_window_detects_more_rows(dataset_id: str) -> None:
    payload = _rows(dataset_id, startRow=0, endRow=2)
    assert [r["id"] for r in payload["rowData"]] == [1, 2]
    assert payload["lastRow"] is None

    payload = _rows(dataset_id, startRow=4, endRow=6)
    assert [r["id"] for r in payload["rowData"]] == [5]
    assert payload["lastRow"] == 5


def test_rows_exact_window_end(dataset_id: str) -> None:
    payload = _rows(dataset_id, startRow=0, endRow=5)
    assert len(payload["rowData"]) == 5
    assert payload["lastRow"] == 5


def test_rows_top_group_level(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        rowGroupCols=[{"field": "region"}, {"field": "product"}],
        groupKeys=[],
        valueCols=[{"field": "amount", "aggFunc": "sum"}],
    )
    assert payload["groupColumn"] == "region"
    assert payload["rowData"] == [
        {"region": "APAC", "__childCount": 1, "amount": 12.0},
        {"region": "EU", "__childCount": 2, "amount": 30.5},
        {"region": "US", "__childCount": 2, "amount": 12.5},
    ]


def test_rows_expanded_group_level(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        rowGroupCols=[{"field": "region"}, {"field": "product"}],
        groupKeys=["EU"],
        sortModel=[{"colId": "product", "sort": "desc"}],
    )
    assert "GROUP BY product" in payload["sql"]
    assert [r["product"] for r in payload["rowData"]] == ["pear", "apple"]


def test_rows_fully_expanded_returns_leaf_rows(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        rowGroupCols=[{"field": "region"}, {"field": "product"}],
        groupKeys=["US", "plum"],
    )
    assert payload["groupColumn"] is None
    assert [r["id"] for r in payload["rowData"]] == [4]


def test_rows_rejects_invalid_grouping_state(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/rows",
        json={"rowGroupCols": [{"field": "region"}], "groupKeys": ["EU", "apple"]},
    )
    assert resp.status_code == 400
    assert "Invalid grouping state" in resp.text


@pytest.mark.parametrize(
    "window", [{"startRow": -5, "endRow": 10}, {"startRow": 10, "endRow": 5}]
)
def test_rows_rejects_invalid_window(dataset_id: str, window: dict) -> None:
    resp = client.post(f"/api/datasets/{dataset_id}/rows", json=window)
    assert resp.status_code == 422


def test_rows_unknown_dataset() -> None:
    resp = client.post("/api/datasets/missing/rows", json={})
    assert resp.status_code == 404


def test_rows_number_filter_and_sort(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        filterModel={
            "amount": {"filterType": "number", "type": "greaterThanOrEqual", "filter": 10}
        },
        sortModel=[{"colId": "amount", "sort": "desc"}],
    )
    assert [r["id"] for r in payload["rowData"]] == [2, 5, 1]


def test_rows_set_and_text_filters(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        filterModel={
            "region": {"filterType": "set", "values": ["EU", "APAC"]},
            "product": {"filterType": "text", "type": "contains", "filter": "APP"},
        },
    )
    assert [r["id"] for r in payload["rowData"]] == [1, 5]


def test_rows_multi_filter_skips_null_entries(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        filterModel={
            "region": {
                "filterType": "multi",
                "filterModels": [None, {"filterType": "set", "values": ["US"]}],
            }
        },
    )
    assert [r["id"] for r in payload["rowData"]] == [3, 4]


def test_rows_date_filter(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        filterModel={
            "order_date": {
                "filterType": "date",
                "type": "greaterThan",
                "dateFrom": "2024-02-01 00:00:00",
                "dateTo": None,
            }
        },
    )
    assert [r["id"] for r in payload["rowData"]] == [4, 5]


def test_rows_ignore_filters_that_cannot_apply(dataset_id: str) -> None:
    payload = _rows(
        dataset_id,
        filterModel={
            "missing_column": {"filterType": "number", "type": "equals", "filter": 1},
            "amount": {"filterType": "number", "type": "lessThan", "filter": "abc"},
        },
    )
    assert len(payload["rowData"]) == 5


def test_rows_window_without_end_row(dataset_id: str) -> None:
    payload = _rows(dataset_id, startRow=3)
    assert [r["id"] for r in payload["rowData"]] == [4, 5]
    assert payload["lastRow"] == 5
    assert payload["sql"].endswith("LIMIT 101 OFFSET 3")


def test_rows_timestamp_group_and_filter(tmp_path: Path) -> None:
    csv_path = tmp_path / "events.csv"
    csv_path.write_text(
        "id,ts\n1,2024-01-05 10:30:00\n2,2024-01-05 10:30:00\n3,2024-01-07 09:00:00\n",
        encoding="utf-8",
    )
    events = app_module.engine.load_file(str(csv_path), "events.csv")

    top = _rows(events, rowGroupCols=[{"field": "ts"}])
    assert top["rowData"][0] == {"ts": "2024-01-05 10:30:00", "__childCount": 2}

    expanded = _rows(
        events, rowGroupCols=[{"field": "ts"}], groupKeys=["2024-01-05 10:30:00"]
    )
    assert [r["id"] for r in expanded["rowData"]] == [1, 2]

    filtered = _rows(
        events,
        filterModel={
            "ts": {
                "filterType": "date",
                "type": "equals",
                "dateFrom": "2024-01-05 10:30:00",
                "dateTo": None,
            }
        },
    )
    assert [r["id"] for r in filtered["rowData"]] == [1, 2]


def test_rows_mixed_case_group_column(tmp_path: Path) -> None:
    csv_path = tmp_path / "mixed.csv"
    csv_path.write_text("Region,Amount\nEU,1\nEU,2\nUS,3\n", encoding="utf-8")
    mixed = app_module.engine.load_file(str(csv_path), "mixed.csv")

    payload = _rows(
        mixed,
        rowGroupCols=[{"field": "Region"}],
        valueCols=[{"field": "Amount", "aggFunc": "sum"}],
    )
    assert "GROUP BY Region" in payload["sql"]
    assert payload["rowData"] == [
        {"Region": "EU", "__childCount": 2, "Amount": 3},
        {"Region": "US", "__childCount": 1, "Amount": 3},
    ]


# ── Count and filter description ──


def test_count_reports_total_and_filtered(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/count",
        json={
            "filterModel": {
                "region": {"filterType": "text", "type": "equals", "filter": "EU"}
            }
        },
    )
    assert resp.status_code == 200
    assert resp.json() == {"totalRows": 5, "filteredRows": 2}


def test_count_without_filter_model(dataset_id: str) -> None:
    resp = client.post(f"/api/datasets/{dataset_id}/count", json={})
    assert resp.status_code == 200
    assert resp.json() == {"totalRows": 5, "filteredRows": 5}


def test_describe_filters_uses_column_types(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/filters/describe",
        json={
            "filterModel": {
                "region": {"filterType": "text", "type": "equals", "filter": "EU"},
                "amount": {
                    "filterType": "number",
                    "type": "greaterThanOrEqual",
                    "filter": 10,
                },
            }
        },
    )
    assert resp.status_code == 200
    assert resp.json() == {"filters": ["region = 'EU'", "amount >= 10"]}


def test_describe_filters_empty_model(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/filters/describe", json={"filterModel": None}
    )
    assert resp.status_code == 200
    assert resp.json() == {"filters": []}


# ── SQL Query ──


def test_query_selects_from_data_view(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/query",
        json={"sql": "SELECT region, SUM(amount) AS total FROM data GROUP BY region ORDER BY region"},
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["columns"] == ["region", "total"]
    assert payload["rows"] == [
        {"region": "APAC", "total": 12.0},
        {"region": "EU", "total": 30.5},
        {"region": "US", "total": 12.5},
    ]
    assert payload["rowCount"] == 3
    assert "executionTime" in payload


def test_query_non_select_statement_returns_success(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/query",
        json={"sql": "CREATE OR REPLACE TEMP TABLE tmp_nonselect AS SELECT 1 AS n"},
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert isinstance(payload["columns"], list)
    assert payload["rowCount"] == len(payload["rows"])


def test_query_rejects_empty_sql(dataset_id: str) -> None:
    resp = client.post(f"/api/datasets/{dataset_id}/query", json={"sql": "   "})
    assert resp.status_code == 400
    assert "SQL query is empty" in resp.text


def test_query_reports_sql_errors(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/query", json={"sql": "SELECT nope FROM data"}
    )
    assert resp.status_code == 400
    assert "Query failed" in resp.text


def test_sql_errors_are_logged_at_error_level(
    dataset_id: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    logged: list[str] = []
    monkeypatch.setattr(app_module, "error", logged.append)

    resp = client.post(
        f"/api/datasets/{dataset_id}/query", json={"sql": "SELECT nope FROM data"}
    )
    assert resp.status_code == 400
    assert len(logged) == 1
    assert logged[0].startswith("Query failed: ")


def test_query_unknown_dataset() -> None:
    resp = client.post("/api/datasets/missing/query", json={"sql": "SELECT 1"})
    assert resp.status_code == 404


# ── Records ──


def test_record_create_update_delete(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/records",
        json={
            "values": {
                "id": 6,
                "region": "EU",
                "product": "kiwi",
                "amount": "3.25",
                "order_date": "2024-04-01",
            }
        },
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    resp = client.patch(
        f"/api/datasets/{dataset_id}/records/6", json={"values": {"amount": 4}}
    )
    assert resp.status_code == 200
    assert resp.json()["updated"] == 1

    payload = _rows(
        dataset_id,
        filterModel={"id": {"filterType": "number", "type": "equals", "filter": 6}},
    )
    assert payload["rowData"][0]["amount"] == 4.0
    assert payload["rowData"][0]["product"] == "kiwi"

    resp = client.delete(f"/api/datasets/{dataset_id}/records/6")
    assert resp.status_code == 200
    assert resp.json()["deleted"] == 1

    resp = client.delete(f"/api/datasets/{dataset_id}/records/6")
    assert resp.status_code == 404


def test_record_create_rejects_unknown_column(dataset_id: str) -> None:
    resp = client.post(
        f"/api/datasets/{dataset_id}/records", json={"values": {"bogus": 1}}
    )
    assert resp.status_code == 400
    assert "Invalid column" in resp.text


def test_record_update_rejects_bad_value(dataset_id: str) -> None:
    resp = client.patch(
        f"/api/datasets/{dataset_id}/records/1", json={"values": {"amount": "lots"}}
    )
    assert resp.status_code == 400
    assert "Invalid float value" in resp.text


# ── Drop ──


def test_drop_dataset(dataset_id: str) -> None:
    resp = client.delete(f"/api/datasets/{dataset_id}")
    assert resp.status_code == 200

    resp = client.get(f"/api/datasets/{dataset_id}/schema")
    assert resp.status_code == 404


def test_drop_dataset_removes_uploaded_file() -> None:
    resp = client.post(
        "/api/datasets/upload",
        files={"file": ("sales.csv", SALES_CSV.encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 200
    dataset_id = resp.json()["id"]
    stored = app_module.UPLOADED_FILES[dataset_id]
    assert stored.exists()

    resp = client.delete(f"/api/datasets/{dataset_id}")
    assert resp.status_code == 200
    assert not stored.exists()
    assert dataset_id not in app_module.UPLOADED_FILES


def test_upload_accepts_excel(tmp_path: Path) -> None:
    import pandas as pd

    xlsx_path = tmp_path / "book.xlsx"
    pd.DataFrame({"id": [1, 2, 3], "name": ["a", "b", "c"]}).to_excel(
        xlsx_path, index=False
    )

    resp = client.post(
        "/api/datasets/upload",
        files={
            "file": (
                "book.xlsx",
                xlsx_path.read_bytes(),
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
        },
    )
    assert resp.status_code == 200
    assert resp.json()["rowCount"] == 3
