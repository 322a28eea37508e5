"""MongoDB exporter implementation."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Sequence

from pymongo import MongoClient, ReturnDocument

from ..engine import Record
from .base import BaseExporter


class MongoExporter(BaseExporter):
    """Upsert records into a MongoDB collection keyed on ``natural_key``."""

    exporter_type = "mongodb"

    def __init__(
        self,
        uri: str,
        database: str,
        collection: str,
        *,
        client: Any | None = None,
    ) -> None:
        self.client = client if client is not None else MongoClient(uri)
        self.collection = self.client[database][collection]
        self._indexed = False

    async def export_properties(self, records: Sequence[Record]) -> list[str]:
        return await asyncio.to_thread(self._upsert_many, list(records))

    def _upsert_many(self, records: list[Record]) -> list[str]:
        if not self._indexed:
            self.collection.create_index("natural_key", unique=True)
            self._indexed = True
        identifiers: list[str] = []
        for record in records:
            document = record.to_dict()
            document["natural_key"] = record.key
            document["updated_at"] = datetime.now(timezone.utc)
            stored = self.collection.find_one_and_replace(
                {"natural_key": record.key},
                document,
                upsert=True,
                projection={"_id": True},
                return_document=ReturnDocument.AFTER,
            )
            identifiers.append(str(stored["_id"]))
        return identifiers

    def close(self) -> None:
        self.client.close()


__all__ = ["MongoExporter"]
