"""Destination lookup and per-destination isolated fan-out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Sequence

import structlog

from ..engine import Record
from .base import BaseExporter


class UnknownExporterError(KeyError):
    """No exporter is registered under the requested destination identifier."""

    def __str__(self) -> str:
        return f"No exporter registered for destination: {self.args[0]}"


@dataclass(slots=True)
class ExportOutcome:
    destination: str
    exported: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ExporterRegistry:
    """Map destination identifiers to shared exporter instances."""

    def __init__(self) -> None:
        self._exporters: Dict[str, BaseExporter] = {}
        self.logger = structlog.get_logger("harvester.exporters")

    def register(self, exporter: BaseExporter, name: str | None = None) -> None:
        key = name or exporter.exporter_type
        if not key:
            raise ValueError("exporter needs a destination identifier")
        self._exporters[key] = exporter
        self.logger.info("exporter_registered", destination=key)

    def get(self, name: str) -> BaseExporter:
        try:
            return self._exporters[name]
        except KeyError:
            raise UnknownExporterError(name) from None

    def resolve(self, names: Iterable[str]) -> list[tuple[str, BaseExporter]]:
        return [(name, self.get(name)) for name in names]

    def names(self) -> list[str]:
        return sorted(self._exporters)

    def close(self) -> None:
        for name, exporter in self._exporters.items():
            try:
                exporter.close()
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("exporter_close_failed", destination=name, error=str(exc))

    def __contains__(self, name: object) -> bool:
        return name in self._exporters


async def fan_out(
    records: Sequence[Record],
    destinations: Sequence[tuple[str, BaseExporter]],
    *,
    job_id: str | None = None,
    logger: structlog.BoundLogger | None = None,
) -> list[ExportOutcome]:
    """Send ``records`` to every destination in order.

    A destination that raises is logged and reported in its outcome; the
    remaining destinations still run and nothing is re-raised.
    """

    log = logger or structlog.get_logger("harvester.exporters")
    outcomes: list[ExportOutcome] = []
    for name, exporter in destinations:
        try:
            identifiers = await exporter.export_properties(records)
        except Exception as exc:  # noqa: BLE001
            log.error("export_failed", destination=name, job_id=job_id, records=len(records), error=str(exc))
            outcomes.append(ExportOutcome(destination=name, error=str(exc)))
            continue
        log.info("export_succeeded", destination=name, job_id=job_id, exported=len(identifiers))
        outcomes.append(ExportOutcome(destination=name, exported=len(identifiers)))
    return outcomes


__all__ = ["ExportOutcome", "ExporterRegistry", "UnknownExporterError", "fan_out"]
