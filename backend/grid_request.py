"""Request models for the grid's server-side row model.

Field names stay in camelCase so payloads sent by the grid validate as-is.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_START_ROW = 0
DEFAULT_END_ROW = 100


class ColumnRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: str
    id: str | None = None
    displayName: str | None = None
    aggFunc: str | None = None


class SortModelItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    colId: str
    sort: Literal["asc", "desc"] = "asc"


class RowsRequest(BaseModel):
    """One "get rows" request: window, grouping, filters and sort."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    startRow: int | None = Field(default=None, ge=0)
    endRow: int | None = Field(default=None, ge=1)
    rowGroupCols: list[ColumnRef] = Field(default_factory=list)
    valueCols: list[ColumnRef] = Field(default_factory=list)
    groupKeys: list[Any] = Field(default_factory=list)
    filterModel: dict[str, Any] | None = None
    sortModel: list[SortModelItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_window(self) -> "RowsRequest":
        if self.end_row <= self.start_row:
            raise ValueError(
                f"endRow ({self.end_row}) must be greater than startRow ({self.start_row})"
            )
        return self

    @property
    def start_row(self) -> int:
        return DEFAULT_START_ROW if self.startRow is None else self.startRow

    @property
    def end_row(self) -> int:
        # A missing end keeps the default window size past the start.
        if self.endRow is None:
            return self.start_row + DEFAULT_END_ROW - DEFAULT_START_ROW
        return self.endRow

    @property
    def page_size(self) -> int:
        return self.end_row - self.start_row


class FilterModelRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filterModel: dict[str, Any] | None = None
