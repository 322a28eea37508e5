"""File based exporters writing one timestamped artifact per export call.

Files have no natural upsert: exporting the same record twice produces two
artifacts, each containing it once. Use the database or MongoDB exporters when
uniqueness on the natural key matters.
"""

from __future__ import annotations

import asyncio
import csv
import itertools
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from ..engine import Record
from .base import BaseExporter

_SEQUENCE = itertools.count(1)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


class FileExporter(BaseExporter):
    """Write each batch to a fresh file under ``output_dir``."""

    extension = "txt"

    def __init__(self, output_dir: Path, prefix: str = "records") -> None:
        self.output_dir = output_dir
        self.prefix = re.sub(r"[^0-9A-Za-z_-]+", "_", prefix.strip()) or "records"

    def _next_path(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        return self.output_dir / f"{self.prefix}-{stamp}-{next(_SEQUENCE)}.{self.extension}"

    async def export_properties(self, records: Sequence[Record]) -> list[str]:
        path = await asyncio.to_thread(self._write_batch, list(records))
        return [str(path)] * len(records)

    def _write_batch(self, records: list[Record]) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self._next_path()
        with path.open("w", encoding="utf-8", newline="") as stream:
            self._write(stream, [record.to_dict() for record in records])
        return path

    def _write(self, stream, rows: list[dict[str, Any]]) -> None:
        raise NotImplementedError


class JsonFileExporter(FileExporter):
    exporter_type = "json"
    extension = "json"

    def _write(self, stream, rows: list[dict[str, Any]]) -> None:
        payload = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "total": len(rows),
            "records": rows,
        }
        json.dump(payload, stream, ensure_ascii=False, indent=2)


class CsvFileExporter(FileExporter):
    exporter_type = "csv"
    extension = "csv"

    def _write(self, stream, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        fieldnames = sorted({key for row in rows for key in row})
        writer = csv.DictWriter(stream, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow({key: _cell(row.get(key)) for key in fieldnames})


__all__ = ["CsvFileExporter", "FileExporter", "JsonFileExporter"]
