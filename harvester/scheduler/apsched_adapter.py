"""APScheduler wrapper running retention housekeeping on a worker thread."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..jobs import JobEventLog, SQLiteJobStore
from ..jobs.models import utcnow

HOUSEKEEPING_JOB_ID = "housekeeping::retention"


@dataclass(slots=True)
class Housekeeper:
    """Delete finished jobs and job events older than the retention period."""

    store: SQLiteJobStore
    events: JobEventLog | None = None
    retention_days: int = 30

    def run(self) -> dict[str, int]:
        logger = structlog.get_logger("harvester.housekeeping")
        cutoff = utcnow() - timedelta(days=self.retention_days)
        removed_jobs = self.store.delete_finished_before(cutoff)
        removed_events = self.events.cleanup(self.retention_days) if self.events else 0
        logger.info(
            "housekeeping_done",
            retention_days=self.retention_days,
            jobs_removed=removed_jobs,
            events_removed=removed_events,
        )
        return {"jobs_removed": removed_jobs, "events_removed": removed_events}


class APSchedulerAdapter:
    """Manage the APScheduler jobs of a running service."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.logger = structlog.get_logger("harvester.scheduler")
        self.started = False

    def start(self) -> None:
        """Start the scheduler; must be called from inside a running event loop."""

        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_housekeeping(self, housekeeper: Housekeeper, interval_hours: float) -> None:
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        self.scheduler.add_job(
            housekeeper.run,
            trigger=IntervalTrigger(hours=interval_hours),
            id=HOUSEKEEPING_JOB_ID,
            replace_existing=True,
        )
        self.logger.info("housekeeping_scheduled", interval_hours=interval_hours)

    def remove_housekeeping(self) -> None:
        if self.scheduler.get_job(HOUSEKEEPING_JOB_ID) is None:
            self.logger.warning("job_remove_skipped", job_id=HOUSEKEEPING_JOB_ID)
            return
        self.scheduler.remove_job(HOUSEKEEPING_JOB_ID)

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter", "HOUSEKEEPING_JOB_ID", "Housekeeper"]
