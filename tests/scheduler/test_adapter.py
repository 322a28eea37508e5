from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from harvester.jobs import JobStatus
from harvester.jobs.models import utcnow
from harvester.scheduler import APSchedulerAdapter, Housekeeper
from harvester.scheduler.apsched_adapter import HOUSEKEEPING_JOB_ID


class StubScheduler:
    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.jobs: dict[str, object] = {}

    def add_job(self, callback, trigger, id, replace_existing):  # noqa: A002
        self.calls.append({"id": id, "trigger": trigger, "callback": callback, "replace": replace_existing})
        self.jobs[id] = callback

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def get_jobs(self):
        return []

    def remove_job(self, job_id):
        self.calls.append({"event": "remove", "id": job_id})
        self.jobs.pop(job_id)

    def start(self):
        self.calls.append({"event": "started"})

    def shutdown(self, wait=False):  # noqa: ARG002
        self.calls.append({"event": "shutdown"})


def test_housekeeping_removes_only_expired_entries(job_store, event_log) -> None:
    expired = job_store.create("alpha", JobStatus.PENDING, {})
    job_store.update(expired, {"status": JobStatus.FAILED, "completed_at": utcnow() - timedelta(days=31)})
    recent = job_store.create("alpha", JobStatus.PENDING, {})
    job_store.update(recent, {"status": JobStatus.COMPLETED, "completed_at": utcnow()})
    event_log.record("info", "fresh")

    result = Housekeeper(job_store, event_log, retention_days=30).run()

    assert result == {"jobs_removed": 1, "events_removed": 0}
    assert job_store.get(expired) is None
    assert job_store.get(recent) is not None


def test_housekeeping_on_a_worker_thread_beside_writers(job_store, event_log) -> None:
    housekeeper = Housekeeper(job_store, event_log, retention_days=30)

    async def scenario() -> dict[str, int]:
        writers = [asyncio.to_thread(event_log.record, "info", f"event {index}") for index in range(20)]
        result, *_ = await asyncio.gather(asyncio.to_thread(housekeeper.run), *writers)
        return result

    assert asyncio.run(scenario()) == {"jobs_removed": 0, "events_removed": 0}
    assert len(event_log.list(limit=50)) == 20


def test_schedule_housekeeping_uses_interval_trigger(job_store) -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)  # type: ignore[arg-type]
    housekeeper = Housekeeper(job_store)

    adapter.schedule_housekeeping(housekeeper, interval_hours=6)
    adapter.start()
    adapter.start()
    adapter.remove_housekeeping()
    adapter.remove_housekeeping()
    adapter.shutdown()

    scheduled = stub.calls[0]
    assert scheduled["id"] == HOUSEKEEPING_JOB_ID
    assert isinstance(scheduled["trigger"], IntervalTrigger)
    assert scheduled["trigger"].interval == timedelta(hours=6)
    assert scheduled["callback"] == housekeeper.run
    assert [call.get("event") for call in stub.calls[1:]] == ["started", "remove", "shutdown"]

    with pytest.raises(ValueError):
        adapter.schedule_housekeeping(housekeeper, interval_hours=0)
