"""Exporter SPI, implementations and fan-out."""

from pathlib import Path

from ..config import ExportersConfig
from ..infra import SQLiteManager
from .base import BaseExporter
from .file_exporter import CsvFileExporter, FileExporter, JsonFileExporter
from .mongo_exporter import MongoExporter
from .registry import ExportOutcome, ExporterRegistry, UnknownExporterError, fan_out
from .sqlite_exporter import SQLiteExporter


def build_default_registry(
    config: ExportersConfig, resolve=Path, manager: SQLiteManager | None = None
) -> ExporterRegistry:
    """Register the file and database exporters, plus MongoDB when configured."""

    registry = ExporterRegistry()
    outputs_dir = resolve(config.outputs_dir)
    registry.register(JsonFileExporter(outputs_dir))
    registry.register(CsvFileExporter(outputs_dir))
    registry.register(SQLiteExporter(resolve(config.sqlite_path), manager))
    if config.mongo_uri:
        registry.register(MongoExporter(config.mongo_uri, config.mongo_database, config.mongo_collection))
    return registry


__all__ = [
    "BaseExporter",
    "CsvFileExporter",
    "ExportOutcome",
    "ExporterRegistry",
    "FileExporter",
    "JsonFileExporter",
    "MongoExporter",
    "SQLiteExporter",
    "UnknownExporterError",
    "build_default_registry",
    "fan_out",
]
