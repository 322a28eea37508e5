"""Shared fixtures: isolated home directory, stores and orchestrator builder."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import pytest
import structlog

from harvester.adapters import AdapterRegistry, SourceAdapter
from harvester.config import ConfigLocator, ConfigRepository, JobsConfig, ScrapingConfig, SourceConfig
from harvester.exporters import BaseExporter, ExporterRegistry
from harvester.infra import SQLiteManager
from harvester.jobs import JobEventLog, SQLiteJobStore
from harvester.orchestrator import Orchestrator
from fakes import SleepRecorder


@pytest.fixture(autouse=True)
def harvester_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("HARVESTER_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fast_scraping() -> ScrapingConfig:
    return ScrapingConfig(
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        page_delay=0.0,
        detail_batch_delay=0.0,
    )


@pytest.fixture
def config_repository(harvester_home: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator(project_root=harvester_home))


@pytest.fixture
def sample_source_config() -> Callable[..., SourceConfig]:
    def _builder(**overrides: Any) -> SourceConfig:
        base: dict[str, Any] = {
            "source_code": "example",
            "item_link_pattern": "ul.listing li a",
            "pagination_pattern": "ul.pagination li a",
            "detail_pattern": {"title": "h1", "price": [".price-now", ".price::attr:data-value"]},
        }
        base.update(overrides)
        return SourceConfig(**base)

    return _builder


@pytest.fixture
def storage() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def job_store(tmp_path: Path, storage: SQLiteManager) -> SQLiteJobStore:
    return SQLiteJobStore(tmp_path / "harvester.db", storage)


@pytest.fixture
def event_log(tmp_path: Path, storage: SQLiteManager) -> JobEventLog:
    return JobEventLog(tmp_path / "harvester.db", storage)


@pytest.fixture
def make_orchestrator(job_store, event_log, fast_scraping, sleep_recorder):
    """Build an orchestrator around one adapter and a set of exporters."""

    def _builder(
        adapter: SourceAdapter,
        exporters: Sequence[BaseExporter] = (),
        *,
        jobs: JobsConfig | None = None,
        scraping: ScrapingConfig | None = None,
    ) -> Orchestrator:
        adapters = AdapterRegistry()
        adapters.register(adapter.source_code, lambda: adapter)
        registry = ExporterRegistry()
        for exporter in exporters:
            registry.register(exporter)
        return Orchestrator(
            adapters,
            registry,
            job_store,
            events=event_log,
            scraping=scraping or fast_scraping,
            jobs=jobs,
            sleep=sleep_recorder,
            job_logger_factory=lambda job_id, source: structlog.get_logger("tests").bind(
                job_id=job_id, source=source
            ),
        )

    return _builder
