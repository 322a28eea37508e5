"""Structured, queryable trail of notable job events."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Mapping

import structlog

from ..infra import SQLiteManager
from .models import utcnow

LEVELS = ("debug", "info", "warning", "error")


@dataclass(slots=True)
class JobEvent:
    id: int
    level: str
    message: str
    created_at: datetime
    job_id: str | None = None
    source: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level,
            "message": self.message,
            "job_id": self.job_id,
            "source": self.source,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }


class JobEventLog:
    """Persist (level, message, source, metadata) entries to ``job_events``."""

    def __init__(self, path: Path, manager: SQLiteManager | None = None) -> None:
        self.path = path
        self.manager = manager or SQLiteManager()
        self.conn = self.manager.connect(path)
        self._lock = self.manager.lock_for(path)
        self.logger = structlog.get_logger("harvester.jobs.events")

    def record(
        self,
        level: str,
        message: str,
        *,
        source: str | None = None,
        job_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> int | None:
        """Store one event; persistence errors are logged, never raised."""

        level = level.lower()
        if level not in LEVELS:
            level = "info"
        try:
            with self._lock:
                cursor = self.conn.execute(
                    "INSERT INTO job_events(job_id, level, message, source, metadata, created_at)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        job_id,
                        level,
                        message,
                        source,
                        json.dumps(dict(metadata or {}), ensure_ascii=False, default=str),
                        utcnow().isoformat(),
                    ),
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            self.logger.error("event_persist_failed", event_message=message, error=str(exc))
            return None
        return cursor.lastrowid

    def list(
        self,
        *,
        level: str | None = None,
        source: str | None = None,
        job_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[JobEvent]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (("level", level), ("source", source), ("job_id", job_id)):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM job_events {where} ORDER BY id DESC LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        return [
            JobEvent(
                id=row["id"],
                level=row["level"],
                message=row["message"],
                created_at=datetime.fromisoformat(row["created_at"]),
                job_id=row["job_id"],
                source=row["source"],
                metadata=json.loads(row["metadata"] or "{}"),
            )
            for row in rows
        ]

    def cleanup(self, days: int = 30) -> int:
        cutoff = utcnow() - timedelta(days=days)
        with self._lock:
            cursor = self.conn.execute("DELETE FROM job_events WHERE created_at < ?", (cutoff.isoformat(),))
            self.conn.commit()
        return cursor.rowcount


__all__ = ["JobEvent", "JobEventLog", "LEVELS"]
