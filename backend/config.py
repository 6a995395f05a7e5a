"""Runtime settings, read from ``DUCKGRID_*`` environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DUCKGRID_", extra="ignore")

    data_dir: Path = Field(default=Path(__file__).parent / "data")
    database: str = ":memory:"
    log_level: str = "WARNING"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    # Largest row window a single request may ask for.
    max_page_size: int = Field(default=10000, ge=1)

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return upper


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
