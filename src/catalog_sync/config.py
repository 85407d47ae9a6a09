"""Application configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "catalog-sync"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 2
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # -------------------------------------------------------------------------
    # Remote Catalog API
    # -------------------------------------------------------------------------
    remote_api_base_url: str = "https://www.planet.com.tw/api"
    remote_api_key: str = ""
    remote_api_timeout: int = 30
    remote_api_max_retries: int = 3
    remote_api_retry_delay_seconds: float = 2.0
    remote_api_cache_ttl_seconds: int = 300
    remote_asset_base_url: str = "https://www.planet.com.tw"

    # -------------------------------------------------------------------------
    # PostgreSQL Database
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "catalog"
    postgres_password: str = ""
    postgres_db: str = "catalog_sync"
    database_url_override: str = ""
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct async database connection URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Construct synchronous PostgreSQL connection URL (for Alembic)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Sync Behaviour
    # -------------------------------------------------------------------------
    sync_method: Literal["step", "background"] = "step"
    auto_sync_enabled: bool = False
    auto_sync_frequency: Literal["minutely", "hourly", "twicedaily", "daily", "weekly"] = "hourly"
    auto_sync_daily_time: str = "02:00"
    orphan_action: Literal["keep", "hide", "soft_delete", "hard_delete"] = "keep"
    max_attempts: int = 3
    cron_chunk_size: int = 20
    step_min_interval_seconds: int = 10
    stale_pending_hours: int = 24
    claim_lease_seconds: int = 600
    progress_cache_ttl_seconds: int = 3

    @field_validator("max_attempts")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        return max(1, v)

    # -------------------------------------------------------------------------
    # Background Worker
    # -------------------------------------------------------------------------
    background_item_sleep_seconds: float = 1.0
    background_time_limit_seconds: int = 20
    background_lock_ttl_seconds: int = 300
    healthcheck_interval_minutes: int = 5
    fallback_delay_seconds: int = 2

    # -------------------------------------------------------------------------
    # Local Catalog & Media
    # -------------------------------------------------------------------------
    site_url: str = "http://localhost:8000"
    media_root: str = "media"
    media_url_path: str = "/media"
    media_download_timeout: int = 30

    @property
    def media_base_url(self) -> str:
        """Public URL prefix for downloaded media."""
        return self.site_url.rstrip("/") + self.media_url_path

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------
    queue_retention_days: int = 30
    activity_log_retention_days: int = 90
    activity_log_recent_limit: int = 600


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
