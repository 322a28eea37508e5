from __future__ import annotations

import asyncio

import pytest

from harvester.config import JobsConfig, ScrapingConfig
from harvester.jobs import JobStatus
from fakes import FailingExporter, FakeAdapter, MemoryExporter

LISTING_URL = "https://example.com/list"


def _request(**overrides) -> dict:
    payload = {"url": LISTING_URL, "source": "fake", "exporters": ["memory"]}
    payload.update(overrides)
    return payload


def test_crawls_only_the_requested_window(make_orchestrator) -> None:
    adapter = FakeAdapter(total_pages=5)
    memory = MemoryExporter()
    orchestrator = make_orchestrator(adapter, [memory])

    job = asyncio.run(orchestrator.run(_request(start=2, limit=2)))

    assert job.status is JobStatus.COMPLETED
    assert adapter.visited == [2, 3]
    assert job.total_pages == 5
    assert job.processed_pages == 2
    assert job.items_found == job.items_processed == 4
    assert len(memory.items) == 4
    assert job.started_at <= job.completed_at
    assert job.duration_ms is not None
    assert job.error is None
    assert adapter.initialized and adapter.cleaned_up


def test_start_beyond_last_page_completes_empty(make_orchestrator) -> None:
    adapter = FakeAdapter(total_pages=2)
    orchestrator = make_orchestrator(adapter, [MemoryExporter()])

    job = asyncio.run(orchestrator.run(_request(start=5)))

    assert job.status is JobStatus.COMPLETED
    assert adapter.list_calls == []
    assert job.processed_pages == 0
    assert job.items_found == 0


def test_total_pages_failure_fails_the_job(make_orchestrator, sleep_recorder) -> None:
    adapter = FakeAdapter(total_pages_error=RuntimeError("listing offline"))
    orchestrator = make_orchestrator(adapter, [MemoryExporter()])

    job = asyncio.run(orchestrator.run(_request()))

    assert job.status is JobStatus.FAILED
    assert adapter.total_pages_calls == 3
    assert adapter.list_calls == []
    assert adapter.cleaned_up
    assert job.error.message.startswith("listing offline")
    assert "failed after 3 attempts" in job.error.message
    assert job.error.type == "RuntimeError"
    assert job.error.timestamp is not None
    assert sleep_recorder.delays == [0.0, 0.0]


def test_failing_page_is_skipped(make_orchestrator, event_log) -> None:
    adapter = FakeAdapter(total_pages=3, failing_pages={2})
    memory = MemoryExporter()
    orchestrator = make_orchestrator(adapter, [memory])

    job = asyncio.run(orchestrator.run(_request()))

    assert job.status is JobStatus.COMPLETED
    assert adapter.list_calls == [1, 2, 2, 2, 3]
    assert job.processed_pages == 3
    assert job.items_found == 4
    assert len(memory.batches) == 2
    skipped = event_log.list(level="warning", job_id=job.id)
    assert [event.message for event in skipped] == ["Page 2 skipped"]


def test_page_url_failure_skips_only_that_page(make_orchestrator, event_log) -> None:
    adapter = FakeAdapter(total_pages=3, broken_url_pages={2})
    memory = MemoryExporter()
    orchestrator = make_orchestrator(adapter, [memory])

    job = asyncio.run(orchestrator.run(_request()))

    assert job.status is JobStatus.COMPLETED
    assert adapter.list_calls == [1, 3]
    assert job.processed_pages == 3
    assert job.items_found == 4
    [skipped] = event_log.list(level="warning", job_id=job.id)
    assert skipped.message == "Page 2 skipped"
    assert skipped.metadata["url"] is None


def test_initialize_failure_fails_the_job(make_orchestrator) -> None:
    adapter = FakeAdapter(initialize_error=RuntimeError("browser missing"))
    orchestrator = make_orchestrator(adapter, [MemoryExporter()])

    job = asyncio.run(orchestrator.run(_request()))

    assert job.status is JobStatus.FAILED
    assert job.error.message == "browser missing"
    assert adapter.total_pages_calls == 0
    assert adapter.list_calls == []
    assert adapter.cleaned_up


def test_cleanup_failure_is_not_a_job_failure(make_orchestrator) -> None:
    adapter = FakeAdapter(total_pages=2, cleanup_error=RuntimeError("browser already closed"))
    memory = MemoryExporter()
    orchestrator = make_orchestrator(adapter, [memory])

    job = asyncio.run(orchestrator.run(_request()))

    assert job.status is JobStatus.COMPLETED
    assert job.error is None
    assert adapter.cleaned_up
    assert len(memory.items) == 4


def test_broken_destination_does_not_fail_the_job(make_orchestrator, event_log) -> None:
    adapter = FakeAdapter(total_pages=2)
    memory = MemoryExporter()
    broken = FailingExporter()
    orchestrator = make_orchestrator(adapter, [memory, broken])

    job = asyncio.run(orchestrator.run(_request(exporters=["memory", "broken"])))

    assert job.status is JobStatus.COMPLETED
    assert job.error is None
    assert len(memory.items) == 4
    assert broken.calls == 2
    errors = event_log.list(level="error", job_id=job.id)
    assert {event.message for event in errors} == {"Export to broken failed"}
    assert errors[0].metadata["destination"] == "broken"


def test_page_delay_is_not_applied_after_the_last_page(make_orchestrator, sleep_recorder) -> None:
    adapter = FakeAdapter(total_pages=3)
    scraping = ScrapingConfig(retry_base_delay=0.0, retry_max_delay=0.0, page_delay=1.5, detail_batch_delay=0.0)
    orchestrator = make_orchestrator(adapter, [MemoryExporter()], scraping=scraping)

    asyncio.run(orchestrator.run(_request()))

    assert sleep_recorder.delays == [1.5, 1.5]


def test_empty_pages_skip_fan_out(make_orchestrator) -> None:
    adapter = FakeAdapter(total_pages=2, records_per_page=0)
    memory = MemoryExporter()
    orchestrator = make_orchestrator(adapter, [memory])

    job = asyncio.run(orchestrator.run(_request()))

    assert job.status is JobStatus.COMPLETED
    assert memory.batches == []


def test_cancel_stops_before_the_next_page(make_orchestrator) -> None:
    submitted: dict[str, str] = {}
    seen_running: list[bool] = []

    async def on_page(page: int) -> None:
        if page == 1:
            seen_running.append(orchestrator.is_currently_running(submitted["id"]))
            assert orchestrator.cancel(submitted["id"])

    adapter = FakeAdapter(total_pages=4, on_page=on_page)
    orchestrator = make_orchestrator(adapter, [MemoryExporter()])

    async def scenario():
        job = await orchestrator.submit(_request())
        submitted["id"] = job.id
        return await orchestrator.wait(job.id)

    job = asyncio.run(scenario())

    assert seen_running == [True]
    assert job.status is JobStatus.FAILED
    assert job.error.reason == "cancelled"
    assert adapter.visited == [1]
    assert job.processed_pages == 1
    assert adapter.cleaned_up
    assert not orchestrator.is_currently_running(job.id)
    assert orchestrator.get_job_status(job.id).is_currently_running is False
    assert orchestrator.cancel(job.id) is False


def test_deadline_marks_job_timed_out(make_orchestrator) -> None:
    async def stall(page: int) -> None:
        await asyncio.Event().wait()

    adapter = FakeAdapter(total_pages=2, on_page=stall)
    orchestrator = make_orchestrator(
        adapter, [MemoryExporter()], jobs=JobsConfig(job_timeout_seconds=0.05)
    )

    job = asyncio.run(orchestrator.run(_request()))

    assert job.status is JobStatus.FAILED
    assert job.error.reason == "timeout"
    assert job.error.type == "TimeoutError"
    assert adapter.cleaned_up


def test_shutdown_interrupts_running_jobs(make_orchestrator, job_store) -> None:
    async def scenario():
        gate = asyncio.Event()

        async def stall(page: int) -> None:
            gate.set()
            await asyncio.Event().wait()

        adapter = FakeAdapter(total_pages=2, on_page=stall)
        orchestrator = make_orchestrator(adapter, [MemoryExporter()])
        job = await orchestrator.submit(_request())
        await gate.wait()
        assert orchestrator.active_jobs == 1
        await orchestrator.shutdown()
        return orchestrator, job.id

    orchestrator, job_id = asyncio.run(scenario())

    job = job_store.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error.reason == "cancelled"
    assert orchestrator.active_jobs == 0


def test_admission_queues_jobs_per_source(make_orchestrator, job_store) -> None:
    async def scenario():
        release = asyncio.Event()
        entered = asyncio.Event()

        async def hold(page: int) -> None:
            entered.set()
            await release.wait()

        adapter = FakeAdapter(total_pages=1, on_page=hold)
        orchestrator = make_orchestrator(
            adapter, [MemoryExporter()], jobs=JobsConfig(max_jobs_per_source=1)
        )
        first = await orchestrator.submit(_request())
        second = await orchestrator.submit(_request())
        await entered.wait()
        statuses = (job_store.get(first.id).status, job_store.get(second.id).status)
        release.set()
        await orchestrator.wait(first.id)
        await orchestrator.wait(second.id)
        return statuses, first.id, second.id

    statuses, first_id, second_id = asyncio.run(scenario())

    assert statuses == (JobStatus.RUNNING, JobStatus.PENDING)
    assert job_store.get(first_id).status is JobStatus.COMPLETED
    assert job_store.get(second_id).status is JobStatus.COMPLETED


@pytest.mark.parametrize(
    "overrides",
    [
        {"source": "unknown"},
        {"exporters": ["memory", "ftp"]},
        {"url": "not a url"},
        {"start": 0},
    ],
)
def test_submit_rejects_invalid_requests(make_orchestrator, job_store, overrides) -> None:
    orchestrator = make_orchestrator(FakeAdapter(), [MemoryExporter()])

    with pytest.raises(ValueError):
        asyncio.run(orchestrator.submit(_request(**overrides)))
    assert job_store.count_by_status()["total"] == 0


def test_statistics_and_listing(make_orchestrator) -> None:
    orchestrator = make_orchestrator(FakeAdapter(total_pages=1), [MemoryExporter()])

    job = asyncio.run(orchestrator.run(_request()))
    stats = orchestrator.statistics()

    assert stats["jobs"]["completed"] == 1
    assert stats["jobs"]["total"] == 1
    assert stats["records"] == {}
    assert stats["system"]["active_jobs"] == 0
    assert stats["system"]["uptime_seconds"] >= 0
    assert [view.id for view in orchestrator.list_jobs(status=JobStatus.COMPLETED)] == [job.id]
    assert orchestrator.get_job_status("missing") is None
