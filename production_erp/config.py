"""Application settings loaded from the environment."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration; every field can be set as ``PRODUCTION_ERP_<NAME>``."""

    model_config = SettingsConfigDict(
        env_prefix="PRODUCTION_ERP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_path: str = Field(default="production_erp.db")
    log_level: str = Field(default="INFO")
    load_demo_data: bool = Field(default=True)
    auto_merge_subtasks: bool = Field(default=True)
    default_hours_worked: float = Field(default=8.0, ge=0)
    allow_early_start: bool = Field(default=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
