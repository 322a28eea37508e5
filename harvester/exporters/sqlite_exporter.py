"""Export records into a SQLite table keyed on their natural key."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Sequence

import structlog

from ..engine import Record
from ..infra import SQLiteManager
from .base import BaseExporter

_UPSERT = """
    INSERT INTO records(natural_key, source, payload, scraped_at, created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(natural_key) DO UPDATE SET
        source = excluded.source,
        payload = excluded.payload,
        scraped_at = excluded.scraped_at,
        updated_at = excluded.updated_at
"""


class SQLiteExporter(BaseExporter):
    """Upsert records as JSON payloads; registered as the ``database`` exporter."""

    exporter_type = "database"

    def __init__(self, path: Path, manager: SQLiteManager | None = None) -> None:
        self.path = path
        self.manager = manager or SQLiteManager()
        self.conn = self.manager.connect(path)
        self._lock = self.manager.lock_for(path)
        self.logger = structlog.get_logger("harvester.exporters.database")

    async def export_properties(self, records: Sequence[Record]) -> list[str]:
        return await asyncio.to_thread(self._upsert_many, list(records))

    def _upsert_many(self, records: list[Record]) -> list[str]:
        identifiers: list[str] = []
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            for record in records:
                try:
                    self.conn.execute(
                        _UPSERT,
                        (
                            record.key,
                            record.source,
                            json.dumps(record.to_dict(), ensure_ascii=False, default=str),
                            record.scraped_at.isoformat(),
                            now,
                            now,
                        ),
                    )
                    row = self.conn.execute(
                        "SELECT id FROM records WHERE natural_key = ?", (record.key,)
                    ).fetchone()
                except sqlite3.Error as exc:
                    self.logger.error("record_upsert_failed", key=record.key, error=str(exc))
                    continue
                identifiers.append(str(row["id"]))
            self.conn.commit()
        return identifiers

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT payload FROM records WHERE natural_key = ?", (key,)
            ).fetchone()
        return json.loads(row["payload"]) if row else None

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]

    def statistics(self, *, recent_window: timedelta = timedelta(hours=24)) -> dict[str, int]:
        cutoff = (datetime.now(timezone.utc) - recent_window).isoformat()
        with self._lock:
            total = self.conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]
            recent = self.conn.execute(
                "SELECT COUNT(*) FROM records WHERE updated_at >= ?", (cutoff,)
            ).fetchone()[0]
        return {"total": total, "recently_scraped": recent}

    def close(self) -> None:
        with self._lock:
            self.conn.commit()


__all__ = ["SQLiteExporter"]
