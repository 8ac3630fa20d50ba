"""Application settings using Pydantic BaseSettings."""

import os
import secrets
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_db_path() -> str:
    """Get absolute path to default SQLite database."""
    config_dir = os.path.dirname(os.path.abspath(__file__))
    package_dir = os.path.dirname(config_dir)
    db_path = os.path.join(package_dir, "data", "cloudrecon.db")
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    cors_origins: str = Field(default="http://localhost:3000")

    # Security
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(64))
    session_ttl_seconds: int = Field(default=86400)
    # Fernet key for credential secrets; derived from secret_key when empty.
    credential_encryption_key: str = Field(default="")

    # Bootstrap admin (startup-only, env-driven)
    bootstrap_admin_enabled: bool = Field(default=False)
    bootstrap_admin_username: str = Field(default="")
    bootstrap_admin_email: str = Field(default="")
    bootstrap_admin_password: str = Field(default="")

    # Database
    database_url: str = Field(default_factory=_get_default_db_path)
    database_url_postgres: str = Field(default="")
    auto_create_schema: bool = Field(default=True)

    @property
    def effective_database_url(self) -> str:
        """Get the effective database URL (Postgres takes precedence if set)."""
        return self.database_url_postgres or self.database_url

    # Task queue
    # "redis" = durable list in redis (requires redis_url)
    # "memory" = in-process FIFO, single process only
    # "none" = no queue; tasks stay pending until run out-of-band
    queue_backend: str = Field(default="redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    queue_name: str = Field(default="task_queue")
    queue_pop_timeout_seconds: int = Field(default=5)
    queue_retry_interval_seconds: float = Field(default=5.0)

    # Worker
    worker_enabled: bool = Field(default=True)
    worker_count: int = Field(default=1)

    # Cloud adapters
    provider_mode: str = Field(default="live")
    cloud_call_timeout_seconds: int = Field(default=10)
    cloud_bulk_timeout_seconds: int = Field(default=60)
    cloud_command_timeout_seconds: int = Field(default=30)
    cloud_fanout_workers: int = Field(default=8)
    s3_max_buckets: int = Field(default=50)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    @property
    def is_test(self) -> bool:
        return self.environment.lower() == "test"

    @property
    def docs_url(self) -> str | None:
        """Return docs URL outside production, else None."""
        return None if self.is_production else "/docs"

    @property
    def openapi_url(self) -> str | None:
        return None if self.is_production else "/openapi.json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production", "test"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production, test")
        return vv

    @field_validator("queue_backend")
    @classmethod
    def validate_queue_backend(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"redis", "memory", "none"}:
            raise ValueError("QUEUE_BACKEND must be one of: redis, memory, none")
        return vv

    @field_validator("provider_mode")
    @classmethod
    def validate_provider_mode(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"live", "mock"}:
            raise ValueError("PROVIDER_MODE must be one of: live, mock")
        return vv

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: str, info):  # type: ignore[override]
        env = (info.data.get("environment") or "development").strip().lower()
        origins = [o.strip() for o in (v or "").split(",") if o.strip()]
        if env == "production":
            bad = [o for o in origins if o.startswith("http://")]
            if bad:
                raise ValueError(f"In production, CORS_ORIGINS must be https-only; got: {bad}")
        return v

    @model_validator(mode="after")
    def validate_cross_field_constraints(self) -> "Settings":
        if self.worker_count < 1:
            raise ValueError("WORKER_COUNT must be at least 1")
        if self.queue_pop_timeout_seconds < 1:
            raise ValueError("QUEUE_POP_TIMEOUT_SECONDS must be at least 1")
        if self.s3_max_buckets < 1:
            raise ValueError("S3_MAX_BUCKETS must be at least 1")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
