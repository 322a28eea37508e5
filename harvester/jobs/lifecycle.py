"""State machine for one job: pending -> running -> completed | failed."""

from __future__ import annotations

import structlog

from .models import Job, JobError, JobStatus, utcnow
from .store import JobStore


class JobLifecycle:
    """Own every status transition of a single persisted job.

    ``started_at`` and ``completed_at`` are written exactly once. Counters
    only grow. A transition that is not allowed from the current state is
    logged and ignored; the return value tells the caller whether it applied.
    """

    def __init__(self, store: JobStore, job: Job, logger: structlog.BoundLogger | None = None) -> None:
        self.store = store
        self.job = job
        self.logger = logger or structlog.get_logger("harvester.jobs").bind(job_id=job.id)

    @property
    def status(self) -> JobStatus:
        return self.job.status

    def _reject(self, target: JobStatus) -> bool:
        self.logger.warning("invalid_transition", current=self.job.status.value, target=target.value)
        return False

    def _persist(self, **fields) -> None:
        for name, value in fields.items():
            setattr(self.job, name, value)
        self.store.update(self.job.id, fields)

    def mark_running(self) -> bool:
        if self.job.status is not JobStatus.PENDING:
            return self._reject(JobStatus.RUNNING)
        self._persist(status=JobStatus.RUNNING, started_at=utcnow())
        return True

    def record_progress(
        self,
        *,
        total_pages: int | None = None,
        processed_pages: int | None = None,
        items_found: int | None = None,
        items_processed: int | None = None,
    ) -> bool:
        if self.job.status is not JobStatus.RUNNING:
            self.logger.warning("progress_ignored", current=self.job.status.value)
            return False
        changes = {}
        for name, value in (
            ("total_pages", total_pages),
            ("processed_pages", processed_pages),
            ("items_found", items_found),
            ("items_processed", items_processed),
        ):
            if value is None:
                continue
            current = getattr(self.job, name)
            if name != "total_pages" and value < current:
                self.logger.warning("counter_regression_ignored", counter=name, current=current, value=value)
                continue
            if value != current:
                changes[name] = value
        if changes:
            self._persist(**changes)
        return True

    def _finish(self, status: JobStatus, **fields) -> bool:
        if self.job.status.is_terminal:
            return self._reject(status)
        self.job.completed_at = utcnow()
        self._persist(
            status=status,
            completed_at=self.job.completed_at,
            duration_ms=self.job.compute_duration(),
            **fields,
        )
        return True

    def mark_completed(self, *, items_found: int | None = None, items_processed: int | None = None) -> bool:
        if self.job.status is not JobStatus.RUNNING:
            return self._reject(JobStatus.COMPLETED)
        fields = {}
        if items_found is not None:
            fields["items_found"] = max(items_found, self.job.items_found)
        if items_processed is not None:
            fields["items_processed"] = max(items_processed, self.job.items_processed)
        return self._finish(JobStatus.COMPLETED, **fields)

    def mark_failed(self, message: str, *, reason: str = "error", error_type: str | None = None) -> bool:
        error = JobError(message=message, reason=reason, type=error_type)
        return self._finish(JobStatus.FAILED, error=error)


__all__ = ["JobLifecycle"]
