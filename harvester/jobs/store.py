"""Persisted job records behind a narrow store interface."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Protocol

from ..infra import SQLiteManager
from .models import Job, JobError, JobStatus, utcnow

_COLUMNS = (
    "source_code",
    "status",
    "config",
    "total_pages",
    "processed_pages",
    "items_found",
    "items_processed",
    "error",
    "created_at",
    "started_at",
    "completed_at",
    "duration_ms",
)


class JobStore(Protocol):
    def create(self, source_code: str, status: JobStatus, config: Mapping[str, Any]) -> str: ...

    def update(self, job_id: str, fields: Mapping[str, Any]) -> None: ...

    def get(self, job_id: str) -> Job | None: ...

    def list(
        self,
        status: JobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        source_code: str | None = None,
    ) -> list[Job]: ...

    def count_by_status(self) -> dict[str, int]: ...


def _encode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, JobStatus):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if column == "config":
        return json.dumps(dict(value), ensure_ascii=False, default=str)
    if column == "error":
        error = value if isinstance(value, JobError) else JobError.model_validate(value)
        return error.model_dump_json()
    return value


def _decode(row: sqlite3.Row) -> Job:
    payload = dict(row)
    payload["config"] = json.loads(payload["config"] or "{}")
    payload["error"] = JobError.model_validate_json(payload["error"]) if payload["error"] else None
    return Job.model_validate(payload)


class SQLiteJobStore:
    """``JobStore`` over a SQLite file managed by :class:`SQLiteManager`."""

    def __init__(self, path: Path, manager: SQLiteManager | None = None) -> None:
        self.path = path
        self.manager = manager or SQLiteManager()
        self.conn = self.manager.connect(path)
        self._lock = self.manager.lock_for(path)

    def create(self, source_code: str, status: JobStatus, config: Mapping[str, Any]) -> str:
        job_id = uuid.uuid4().hex
        with self._lock:
            self.conn.execute(
                "INSERT INTO jobs(id, source_code, status, config, created_at) VALUES (?, ?, ?, ?, ?)",
                (job_id, source_code, JobStatus(status).value, _encode("config", config), utcnow().isoformat()),
            )
            self.conn.commit()
        return job_id

    def update(self, job_id: str, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - set(_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        if not fields:
            return
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [_encode(column, value) for column, value in fields.items()]
        with self._lock:
            self.conn.execute(f"UPDATE jobs SET {assignments} WHERE id = ?", (*values, job_id))
            self.conn.commit()

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return _decode(row) if row else None

    def list(
        self,
        status: JobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        source_code: str | None = None,
    ) -> list[Job]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(JobStatus(status).value)
        if source_code:
            clauses.append("source_code = ?")
            params.append(source_code)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"SELECT * FROM jobs {where} ORDER BY created_at DESC LIMIT ? OFFSET ?"
        with self._lock:
            rows = self.conn.execute(query, (*params, limit, offset)).fetchall()
        return [_decode(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        with self._lock:
            rows = self.conn.execute("SELECT status, COUNT(*) AS total FROM jobs GROUP BY status").fetchall()
        for row in rows:
            counts[row["status"]] = row["total"]
        counts["total"] = sum(counts.values())
        return counts

    def delete_finished_before(self, cutoff: datetime) -> int:
        """Remove terminal jobs completed before ``cutoff``; housekeeping only."""

        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM jobs WHERE status IN (?, ?) AND completed_at < ?",
                (JobStatus.COMPLETED.value, JobStatus.FAILED.value, cutoff.isoformat()),
            )
            self.conn.commit()
        return cursor.rowcount


__all__ = ["JobStore", "SQLiteJobStore"]
