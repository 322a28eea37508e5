"""Job data model and the request that spawns a job."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobRequest(BaseModel):
    """Validated input of ``POST /scrape`` and ``harvester run``."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    source: str = Field(validation_alias=AliasChoices("source", "websiteCode", "website_code"))
    exporters: list[str] = Field(min_length=1)
    start: int = Field(default=1, ge=1)
    limit: int = Field(default=999, ge=1)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        parts = urlsplit(value)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("source")
    @classmethod
    def _check_source(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("source cannot be empty")
        return value

    @field_validator("exporters")
    @classmethod
    def _dedupe_exporters(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for item in value:
            item = item.strip()
            if item and item not in cleaned:
                cleaned.append(item)
        if not cleaned:
            raise ValueError("at least one exporter is required")
        return cleaned

    @property
    def last_page_requested(self) -> int:
        return self.start + self.limit - 1


class JobError(BaseModel):
    """Structured description of a fatal job failure."""

    message: str
    reason: str = "error"
    type: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class Job(BaseModel):
    id: str
    source_code: str
    status: JobStatus = JobStatus.PENDING
    config: dict[str, Any] = Field(default_factory=dict)
    total_pages: int = 0
    processed_pages: int = 0
    items_found: int = 0
    items_processed: int = 0
    error: JobError | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None

    def compute_duration(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


class JobView(Job):
    """A persisted job decorated with live in-process state."""

    is_currently_running: bool = False


__all__ = ["Job", "JobError", "JobRequest", "JobStatus", "JobView", "utcnow"]
