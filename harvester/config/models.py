"""Pydantic models used across the harvester configuration flow."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]


class ScrapingConfig(BaseModel):
    """Knobs for network-facing steps: retries, timeouts and pacing."""

    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    timeout_ms: int = 30000
    page_delay: float = 3.0
    detail_batch_size: int = 3
    detail_batch_delay: float = 2.0
    headless: bool = True
    browser_args: list[str] = Field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))

    @field_validator("browser_args", mode="before")
    @classmethod
    def _coerce_args(cls, value: Any) -> list[str]:
        if value in (None, ""):
            return list(DEFAULT_BROWSER_ARGS)
        if isinstance(value, str):
            return [arg.strip() for arg in value.split(",") if arg.strip()]
        return list(value)

    @model_validator(mode="after")
    def _validate_ranges(self) -> "ScrapingConfig":
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        if self.detail_batch_size < 1:
            raise ValueError("detail_batch_size must be >= 1")
        for name in ("retry_base_delay", "retry_max_delay", "page_delay", "detail_batch_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        return self

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class RateLimitConfig(BaseModel):
    """Sliding-window request ceiling shared by every fetch in the process."""

    requests_per_minute: int = 60
    # Accepted for compatibility; the limiter only enforces requests_per_minute.
    burst_limit: int = 10

    @model_validator(mode="after")
    def _validate_limits(self) -> "RateLimitConfig":
        if self.requests_per_minute < 1:
            raise ValueError("requests_per_minute must be >= 1")
        if self.burst_limit < 0:
            raise ValueError("burst_limit must be >= 0")
        return self


class JobsConfig(BaseModel):
    """Admission, deadline and retention settings for crawl jobs."""

    job_timeout_seconds: float | None = None
    max_jobs_per_source: int | None = None
    retention_days: int = 30
    housekeeping_interval_hours: float = 24.0

    @model_validator(mode="after")
    def _validate_jobs(self) -> "JobsConfig":
        if self.job_timeout_seconds is not None and self.job_timeout_seconds <= 0:
            raise ValueError("job_timeout_seconds must be positive when set")
        if self.max_jobs_per_source is not None and self.max_jobs_per_source < 1:
            raise ValueError("max_jobs_per_source must be >= 1 when set")
        if self.retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        if self.housekeeping_interval_hours <= 0:
            raise ValueError("housekeeping_interval_hours must be positive")
        return self


class ExportersConfig(BaseModel):
    """Destination settings for the built-in exporters."""

    sqlite_path: Path = Field(default=Path("data/records.db"))
    outputs_dir: Path = Field(default=Path("data/outputs"))
    mongo_uri: str | None = None
    mongo_database: str = "harvester"
    mongo_collection: str = "records"

    @field_validator("sqlite_path", "outputs_dir", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)


class ApiConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000


class GlobalConfig(BaseModel):
    """Process-wide settings shared by every job."""

    scraping: ScrapingConfig = Field(default_factory=ScrapingConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    database_path: Path = Field(default=Path("data/harvester.db"))

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_db_path(cls, value: Any) -> Path:
        return Path(value)

    def resolve_path(self, path: Path, base_dir: Path) -> Path:
        """Return ``path`` anchored at ``base_dir`` when it is relative."""

        if path.is_absolute():
            return path
        return (base_dir / path).resolve()


class SourceConfig(BaseModel):
    """Selector-driven definition of one listing source.

    Detail selectors accept the ``css::text``, ``css::html`` and
    ``css::attr:name`` modes; a list of selectors is tried in order until one
    yields a non-empty value.
    """

    source_code: str
    description: str = ""
    item_link_pattern: str
    pagination_pattern: str | None = None
    page_url_template: str = "{base}/p{page}"
    detail_pattern: dict[str, str | list[str]] = Field(default_factory=dict)
    key_field: str = "source_url"
    use_browser: bool = False
    wait_selector: str | None = None
    fetch_details: bool = True
    extra_headers: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_patterns(self) -> "SourceConfig":
        if not self.source_code.strip():
            raise ValueError("source_code cannot be empty")
        if not self.item_link_pattern:
            raise ValueError("item_link_pattern cannot be empty")
        if "{page}" not in self.page_url_template:
            raise ValueError("page_url_template must contain a {page} placeholder")
        return self


__all__ = [
    "ApiConfig",
    "ExportersConfig",
    "GlobalConfig",
    "JobsConfig",
    "RateLimitConfig",
    "ScrapingConfig",
    "SourceConfig",
]
