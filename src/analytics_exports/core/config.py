"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

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

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg:// in production)",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # Download links
    download_signing_key: str = Field(
        min_length=32,
        description="Secret key for signing time-limited download links (minimum 32 characters)",
    )
    download_signing_algorithm: str = Field(default="HS256", description="Download token signing algorithm")

    # Export output
    export_dir: str = Field(
        default="./exports",
        description="Directory for finished export artifacts",
    )
    export_work_dir: str = Field(
        default="./exports/.work",
        description="Directory for per-job partial artifacts kept between retries",
    )

    # Admission and lifecycle
    report_max_concurrent_exports_per_user: int = Field(
        default=5,
        description="Maximum queued+running export jobs per owner",
        gt=0,
    )
    report_download_ttl_hours: int = Field(
        default=24,
        description="Hours a finished export stays downloadable",
        gt=0,
    )
    report_max_attempts: int = Field(
        default=3,
        description="Execution attempts before a job fails permanently",
        gt=0,
    )
    report_retry_backoff: str = Field(
        default="60,300,900",
        description="Comma-separated retry delays in seconds, one per failed attempt",
    )
    report_resume_max_retries: int = Field(
        default=5,
        description="Jobs with at least this many recorded failures restart from zero instead of resuming",
        gt=0,
    )

    @property
    def report_retry_backoff_list(self) -> list[int]:
        """Parse the retry backoff string into a list of delays in seconds."""
        if not self.report_retry_backoff.strip():
            return []
        return [int(d.strip()) for d in self.report_retry_backoff.split(",") if d.strip()]

    # Chunked execution
    report_tabular_window_size: int = Field(
        default=5000,
        description="Rows per window for streamed spreadsheet output",
        gt=0,
    )
    report_paginated_window_size: int = Field(
        default=1000,
        description="Rows per window for rendered document output",
        gt=0,
    )
    report_checkpoint_interval_percent: int = Field(
        default=10,
        description="Progress step (in percent) between persisted checkpoints",
        gt=0,
        le=100,
    )
    report_booklet_rows_per_page: int = Field(
        default=20,
        description="Rows assumed per page when estimating booklet contents",
        gt=0,
    )
    report_toc_entries_per_page: int = Field(
        default=40,
        description="Table of contents entries per page",
        gt=0,
    )
    report_author: str = Field(
        default="Analytics Exports",
        description="Author stamped onto generated documents",
    )
    preview_max_page_size: int = Field(
        default=500,
        description="Largest page size accepted by the preview endpoint",
        gt=0,
    )

    # Worker pool
    worker_enabled: bool = Field(
        default=True,
        description="Run the export worker pool inside the API process",
    )
    worker_concurrency: int = Field(
        default=2,
        description="Number of concurrent export workers",
        gt=0,
    )
    worker_poll_interval: float = Field(
        default=2.0,
        description="Seconds an idle worker waits before polling the queue again",
        gt=0,
    )
    worker_lease_seconds: int = Field(
        default=3600,
        description="Seconds a claimed job stays leased to one worker",
        gt=0,
    )

    # Notifications
    notification_webhook_url: str | None = Field(
        default=None,
        description="Webhook receiving export completion/failure events (logging only when unset)",
    )
    notification_timeout: float = Field(
        default=5.0,
        description="Webhook request timeout in seconds",
        gt=0,
    )

    @field_validator("notification_webhook_url")
    @classmethod
    def validate_notification_webhook_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if not v.startswith(("https://", "http://")):
            msg = "notification_webhook_url must be an http(s) URL"
            raise ValueError(msg)
        return v

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )
    cors_origins: str = Field(
        default="",
        description="Comma-separated allowed CORS origins (empty disables CORS headers)",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse the CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
