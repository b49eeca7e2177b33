"""Application configuration powered by Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Strongly typed application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PDF_HIGHLIGHTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    project_name: str = Field(default="PDF Highlighter Annotation Store")
    version: str = Field(default="0.1.0")

    database_url: str = Field(default="sqlite+aiosqlite:///./data/pdf_highlighter.db")
    sqlite_busy_timeout: float = Field(default=5.0, gt=0)

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765, ge=1, le=65535)

    log_level: str = Field(default="INFO")
    cors_allowed_origins: list[str] = Field(default_factory=list)

    suggestion_limit: int = Field(default=6, ge=1, le=50)
    tag_suggestion_limit: int = Field(default=10, ge=1, le=100)
    tag_cache_ttl_seconds: float = Field(default=30.0, ge=0)
    tag_load_batch_size: int = Field(default=10, ge=1)
    reconcile_max_attempts: int = Field(default=3, ge=1, le=10)


@lru_cache
def get_settings() -> AppSettings:
    """Provide a cached singleton settings instance."""

    return AppSettings()
