"""FastAPI app: dataset loading and the grid's server-side row model routes."""

from __future__ import annotations

from pathlib import Path
from typing import Any, NoReturn
from uuid import uuid4

import duckdb
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from config import get_settings
from engine import DuckDBEngine
from grid_request import FilterModelRequest, RowsRequest
from log import error, set_level

settings = get_settings()
set_level(settings.log_level)

app = FastAPI(title="DuckGrid")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = DuckDBEngine(settings.database)

# ── Data directory for uploaded files ──
DATA_DIR = settings.data_dir
DATA_DIR.mkdir(parents=True, exist_ok=True)

SUPPORTED_UPLOAD_SUFFIX: dict[str, str] = {
    ".csv": "csv",
    ".parquet": "parquet",
    ".xlsx": "excel",
}

# dataset id -> stored upload, removed when the dataset is dropped
UPLOADED_FILES: dict[str, Path] = {}


def _raise_for(e: Exception, prefix: str) -> NoReturn:
    if isinstance(e, duckdb.Error):
        error(f"{prefix}: {e}")
        raise HTTPException(400, f"{prefix}: {e}")
    if "not found" in str(e).lower():
        raise HTTPException(404, str(e))
    raise HTTPException(400, str(e))


async def _store_upload_file(file: UploadFile) -> tuple[str, str, Path]:
    if not file.filename:
        raise HTTPException(400, "No file provided")

    original_name = file.filename
    safe_name = Path(original_name).name
    if safe_name != original_name or safe_name in {"", ".", ".."}:
        raise HTTPException(400, "Invalid filename")

    suffix = Path(safe_name).suffix.lower()
    file_format = SUPPORTED_UPLOAD_SUFFIX.get(suffix)
    if not file_format:
        raise HTTPException(400, f"Unsupported file format: {suffix}")

    save_path = DATA_DIR / f"{uuid4().hex}_{safe_name}"
    content = await file.read()
    save_path.write_bytes(content)
    return safe_name, file_format, save_path


# ── Upload ──


@app.post("/api/datasets/upload")
async def upload_dataset(file: UploadFile = File(...)):
    safe_name, file_format, save_path = await _store_upload_file(file)

    try:
        dataset_id = engine.load_file(str(save_path), safe_name, file_format=file_format)
        schema = engine.get_schema(dataset_id)
    except (ValueError, duckdb.Error) as e:
        save_path.unlink(missing_ok=True)
        raise HTTPException(400, f"Failed to load file: {e}")

    UPLOADED_FILES[dataset_id] = save_path

    return {
        "id": dataset_id,
        "name": safe_name,
        "rowCount": schema["rowCount"],
        "columns": schema["columns"],
    }


@app.delete("/api/datasets/{dataset_id}")
async def drop_dataset(dataset_id: str):
    try:
        engine.drop_dataset(dataset_id)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Drop failed")

    stored = UPLOADED_FILES.pop(dataset_id, None)
    if stored is not None:
        stored.unlink(missing_ok=True)
    return {"success": True}


# ── Schema ──


@app.get("/api/datasets/{dataset_id}/schema")
async def get_schema(dataset_id: str):
    try:
        return engine.get_schema(dataset_id)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Schema query failed")


# ── Server-side row model ──


@app.post("/api/datasets/{dataset_id}/rows")
async def get_rows(dataset_id: str, body: RowsRequest):
    if body.page_size > settings.max_page_size:
        raise HTTPException(
            400, f"Row window exceeds the maximum of {settings.max_page_size} rows"
        )
    try:
        return engine.get_rows(dataset_id, body)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Invalid query input")


@app.post("/api/datasets/{dataset_id}/count")
async def count_rows(dataset_id: str, body: FilterModelRequest):
    try:
        return engine.count_rows(dataset_id, body.filterModel)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Count failed")


@app.post("/api/datasets/{dataset_id}/filters/describe")
async def describe_filters(dataset_id: str, body: FilterModelRequest):
    try:
        return {"filters": engine.describe_filters(dataset_id, body.filterModel)}
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Filter description failed")


# ── SQL Query ──


class QueryRequest(BaseModel):
    sql: str


@app.post("/api/datasets/{dataset_id}/query")
async def run_query(dataset_id: str, body: QueryRequest):
    if not body.sql.strip():
        raise HTTPException(400, "SQL query is empty")
    try:
        return engine.run_query(dataset_id, body.sql)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Query failed")


# ── Records ──


class RecordRequest(BaseModel):
    values: dict[str, Any] = Field(default_factory=dict)


@app.post("/api/datasets/{dataset_id}/records")
async def create_record(dataset_id: str, body: RecordRequest):
    try:
        return engine.create_record(dataset_id, body.values)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Create failed")


@app.patch("/api/datasets/{dataset_id}/records/{record_id}")
async def update_record(dataset_id: str, record_id: str, body: RecordRequest):
    try:
        return engine.update_record(dataset_id, record_id, body.values)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Update failed")


@app.delete("/api/datasets/{dataset_id}/records/{record_id}")
async def delete_record(dataset_id: str, record_id: str):
    try:
        return engine.delete_record(dataset_id, record_id)
    except (ValueError, duckdb.Error) as e:
        _raise_for(e, "Delete failed")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True)
