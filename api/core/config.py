"""
Service settings, read from the environment (and `.env` for local development).
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from repo root for local development.
ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

SSL_MODES = ("disable", "require", "verify-full")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, populate_by_name=True)

    database_url: str = Field(default="", alias="DATABASE_URL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")
    api_prefix: str = Field(default="", alias="API_PREFIX")

    db_schema: str = Field(default="komunalka", alias="DB_SCHEMA")
    db_ssl_mode: str = Field(default="verify-full", alias="DB_SSL_MODE")
    db_ssl_root_cert: str | None = Field(default=None, alias="DB_SSL_ROOT_CERT")
    db_pool_min_size: int = Field(default=1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(default=5, alias="DB_POOL_MAX_SIZE")
    db_command_timeout: float = Field(default=30.0, alias="DB_COMMAND_TIMEOUT")

    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")
    rate_limit_requests: int = Field(default=200, alias="RATE_LIMIT_REQUESTS")
    rate_limit_window_seconds: float = Field(default=60.0, alias="RATE_LIMIT_WINDOW_SECONDS")
    max_body_bytes: int = Field(default=1024 * 1024, alias="MAX_BODY_BYTES")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("db_ssl_mode")
    @classmethod
    def _check_ssl_mode(cls, value: str) -> str:
        mode = (value or "").strip().lower()
        if mode not in SSL_MODES:
            raise ValueError(f"DB_SSL_MODE must be one of {', '.join(SSL_MODES)}.")
        return mode

    @field_validator("db_schema")
    @classmethod
    def _check_schema_name(cls, value: str) -> str:
        # Interpolated into DDL/SQL, so only plain identifiers are allowed.
        name = (value or "").strip()
        if not name.isidentifier():
            raise ValueError("DB_SCHEMA must be a plain SQL identifier.")
        return name.lower()

    @field_validator("api_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        prefix = (value or "").strip().rstrip("/")
        if prefix and not prefix.startswith("/"):
            prefix = "/" + prefix
        return prefix

    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_origins.split(",")]
        return [o for o in origins if o] or ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
