from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from harvester.config import ExportersConfig
from harvester.engine import Record
from harvester.exporters import ExporterRegistry, UnknownExporterError, build_default_registry, fan_out
from fakes import FailingExporter, MemoryExporter


def _records() -> list[Record]:
    return [Record(key=f"https://example.com/{name}", source="example") for name in ("a", "b")]


def test_failing_destination_does_not_stop_the_rest() -> None:
    broken = FailingExporter()
    memory = MemoryExporter()
    registry = ExporterRegistry()
    registry.register(broken)
    registry.register(memory)

    outcomes = asyncio.run(fan_out(_records(), registry.resolve(["broken", "memory"]), job_id="job-1"))

    assert [outcome.destination for outcome in outcomes] == ["broken", "memory"]
    assert not outcomes[0].ok
    assert outcomes[0].error == "destination down"
    assert outcomes[1].ok
    assert outcomes[1].exported == 2
    assert set(memory.items) == {"https://example.com/a", "https://example.com/b"}
    assert broken.calls == 1


def test_registry_lookup() -> None:
    registry = ExporterRegistry()
    memory = MemoryExporter()
    registry.register(memory, name="mirror")

    assert registry.get("mirror") is memory
    assert "mirror" in registry
    assert registry.names() == ["mirror"]
    with pytest.raises(UnknownExporterError) as info:
        registry.resolve(["mirror", "ftp"])
    assert str(info.value) == "No exporter registered for destination: ftp"


def test_default_registry(tmp_path: Path) -> None:
    config = ExportersConfig(sqlite_path=tmp_path / "records.db", outputs_dir=tmp_path / "out")
    registry = build_default_registry(config)
    assert registry.names() == ["csv", "database", "json"]
    registry.close()
