"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from ..engine import Record


class BaseExporter(ABC):
    """Uniform exporter contract enabling plug-and-play destinations.

    Upsert-capable destinations must key on :attr:`Record.key` so that
    re-exporting a record updates the stored entry instead of duplicating it.
    """

    exporter_type: str = ""

    @abstractmethod
    async def export_properties(self, records: Sequence[Record]) -> list[str]:
        """Persist a batch and return one identifier per stored record.

        Raising fails the whole call; partial failures inside a batch are the
        exporter's own concern.
        """

    async def export_property(self, record: Record) -> str:
        identifiers = await self.export_properties([record])
        if not identifiers:
            raise RuntimeError(f"{self.exporter_type} exporter stored nothing for {record.key}")
        return identifiers[0]

    def close(self) -> None:
        """Release underlying resources."""


__all__ = ["BaseExporter"]
