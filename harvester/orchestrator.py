"""Job orchestrator driving paginated crawls and export fan-out."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, Awaitable, Callable, Mapping, Sequence

import structlog

from .adapters import AdapterRegistry, SourceAdapter
from .config import JobsConfig, ScrapingConfig
from .engine import RetryExhaustedError, RetryPolicy, with_retry
from .exporters import BaseExporter, ExporterRegistry, UnknownExporterError, fan_out
from .jobs import Job, JobEventLog, JobLifecycle, JobRequest, JobStatus, JobStore, JobView
from .logging_conf import job_logger, release_job_logger

JobLoggerFactory = Callable[[str, str], structlog.BoundLogger]


class JobCancelled(Exception):
    """Raised inside a crawl loop once its cancellation signal is observed."""


class Orchestrator:
    """Central coordinator managing the lifecycle of crawl jobs.

    Each submitted job runs as a detached asyncio task tracked in an
    in-memory table that answers "is this job active right now"; the job
    store stays the source of truth for everything else. All state here is
    confined to the event loop that calls :meth:`submit`.
    """

    def __init__(
        self,
        adapters: AdapterRegistry,
        exporters: ExporterRegistry,
        store: JobStore,
        *,
        events: JobEventLog | None = None,
        scraping: ScrapingConfig | None = None,
        jobs: JobsConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        job_logger_factory: JobLoggerFactory | None = None,
    ) -> None:
        scraping = scraping or ScrapingConfig()
        jobs = jobs or JobsConfig()
        self.adapters = adapters
        self.exporters = exporters
        self.store = store
        self.events = events
        self.retry_policy = RetryPolicy.from_config(scraping)
        self.page_delay = scraping.page_delay
        self.job_timeout = jobs.job_timeout_seconds
        self.max_jobs_per_source = jobs.max_jobs_per_source
        self._sleep = sleep
        self._clock = clock
        self._started_at = clock()
        self._job_logger_factory = job_logger_factory or job_logger
        self._running: dict[str, asyncio.Task] = {}
        self._cancel_signals: dict[str, asyncio.Event] = {}
        self._source_slots: dict[str, asyncio.Semaphore] = {}
        self.logger = structlog.get_logger("harvester.orchestrator")

    # ------------------------------------------------------------------
    # Submission and control
    # ------------------------------------------------------------------
    async def submit(self, request: JobRequest | Mapping[str, Any]) -> Job:
        """Validate, persist a pending job and start it in the background.

        Raises ``ValueError`` (including pydantic's ``ValidationError``) for a
        malformed request or an unknown source/destination identifier.
        """

        if not isinstance(request, JobRequest):
            request = JobRequest.model_validate(request)
        if request.source not in self.adapters:
            raise ValueError(f"Unknown source: {request.source}")
        try:
            destinations = self.exporters.resolve(request.exporters)
        except UnknownExporterError as exc:
            raise ValueError(str(exc)) from None

        job_id = self.store.create(request.source, JobStatus.PENDING, request.model_dump())
        job = self.store.get(job_id)
        if job is None:
            raise RuntimeError(f"Job {job_id} vanished right after creation")

        cancel_signal = asyncio.Event()
        task = asyncio.create_task(
            self._run_job(job, request, destinations, cancel_signal), name=f"harvester-job-{job_id}"
        )
        self._running[job_id] = task
        self._cancel_signals[job_id] = cancel_signal
        task.add_done_callback(lambda _task: self._forget(job_id))
        self.logger.info("job_submitted", job_id=job_id, source=request.source, exporters=request.exporters)
        return job

    async def run(self, request: JobRequest | Mapping[str, Any]) -> Job:
        """Submit a job and wait for it to reach a terminal state."""

        job = await self.submit(request)
        finished = await self.wait(job.id)
        return finished or job

    def cancel(self, job_id: str) -> bool:
        """Ask a running job to stop before its next page."""

        signal = self._cancel_signals.get(job_id)
        if signal is None:
            return False
        signal.set()
        self.logger.info("job_cancel_requested", job_id=job_id)
        return True

    async def wait(self, job_id: str, timeout: float | None = None) -> Job | None:
        task = self._running.get(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return self.store.get(job_id)

    async def shutdown(self) -> None:
        """Cancel every in-flight job and wait for their bookkeeping to finish."""

        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("orchestrator_shutdown", cancelled=len(tasks))

    def _forget(self, job_id: str) -> None:
        self._running.pop(job_id, None)
        self._cancel_signals.pop(job_id, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_currently_running(self, job_id: str) -> bool:
        task = self._running.get(job_id)
        return task is not None and not task.done()

    def _view(self, job: Job) -> JobView:
        return JobView.model_validate(
            {**job.model_dump(), "is_currently_running": self.is_currently_running(job.id)}
        )

    def get_job_status(self, job_id: str) -> JobView | None:
        job = self.store.get(job_id)
        return self._view(job) if job else None

    def list_jobs(
        self,
        status: JobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        source_code: str | None = None,
    ) -> list[JobView]:
        jobs = self.store.list(status=status, limit=limit, offset=offset, source_code=source_code)
        return [self._view(job) for job in jobs]

    @property
    def active_jobs(self) -> int:
        return sum(1 for task in self._running.values() if not task.done())

    def statistics(self) -> dict[str, Any]:
        counts = self.store.count_by_status()
        active = self.active_jobs
        if active > counts.get(JobStatus.RUNNING.value, 0):
            counts["total"] += active - counts[JobStatus.RUNNING.value]
            counts[JobStatus.RUNNING.value] = active
        records: dict[str, Any] = {}
        if "database" in self.exporters:
            database = self.exporters.get("database")
            stats = getattr(database, "statistics", None)
            if callable(stats):
                records = stats()
        return {
            "jobs": counts,
            "records": records,
            "system": {
                "active_jobs": active,
                "uptime_seconds": round(self._clock() - self._started_at, 3),
            },
        }

    # ------------------------------------------------------------------
    # Background job
    # ------------------------------------------------------------------
    def _record_event(self, level: str, message: str, job: Job, **metadata: Any) -> None:
        if self.events is None:
            return
        self.events.record(level, message, source=job.source_code, job_id=job.id, metadata=metadata)

    @contextlib.asynccontextmanager
    async def _admission(self, source_code: str):
        if not self.max_jobs_per_source:
            yield
            return
        slot = self._source_slots.setdefault(source_code, asyncio.Semaphore(self.max_jobs_per_source))
        async with slot:
            yield

    async def _run_job(
        self,
        job: Job,
        request: JobRequest,
        destinations: Sequence[tuple[str, BaseExporter]],
        cancel_signal: asyncio.Event,
    ) -> None:
        log = self._job_logger_factory(job.id, request.source)
        lifecycle = JobLifecycle(self.store, job, log)
        deadline = asyncio.timeout(None)
        try:
            async with self._admission(request.source):
                async with deadline:
                    if self.job_timeout:
                        deadline.reschedule(asyncio.get_running_loop().time() + self.job_timeout)
                    await self._crawl(lifecycle, request, destinations, cancel_signal, log)
        except JobCancelled:
            lifecycle.mark_failed("Job cancelled", reason="cancelled")
            self._record_event("warning", "Job cancelled", job)
        except TimeoutError as exc:
            if not deadline.expired():
                self._fail(lifecycle, exc, log)
            else:
                message = f"Job exceeded its {self.job_timeout}s deadline"
                log.error("job_timeout", timeout=self.job_timeout)
                lifecycle.mark_failed(message, reason="timeout", error_type="TimeoutError")
                self._record_event("error", message, job)
        except asyncio.CancelledError:
            lifecycle.mark_failed("Job interrupted by shutdown", reason="cancelled")
            self._record_event("warning", "Job interrupted by shutdown", job)
            raise
        except Exception as exc:  # noqa: BLE001
            self._fail(lifecycle, exc, log)
        finally:
            release_job_logger(job.id)

    def _fail(self, lifecycle: JobLifecycle, exc: Exception, log: structlog.BoundLogger) -> None:
        message = str(exc) or type(exc).__name__
        cause = exc.last_error if isinstance(exc, RetryExhaustedError) else exc
        error_type = type(cause).__name__
        log.error("job_failed", error=message, error_type=error_type)
        lifecycle.mark_failed(message, error_type=error_type)
        self._record_event("error", "Job failed", lifecycle.job, error=message)

    async def _crawl(
        self,
        lifecycle: JobLifecycle,
        request: JobRequest,
        destinations: Sequence[tuple[str, BaseExporter]],
        cancel_signal: asyncio.Event,
        log: structlog.BoundLogger,
    ) -> None:
        job = lifecycle.job
        if cancel_signal.is_set():
            raise JobCancelled(job.id)
        adapter: SourceAdapter = self.adapters.create(request.source)
        lifecycle.mark_running()
        log.info("job_started", url=request.url, start=request.start, limit=request.limit)
        self._record_event("info", "Job started", job, url=request.url)
        try:
            await adapter.initialize()
            total_pages = await with_retry(
                lambda: adapter.get_total_pages(request.url),
                label=f"total pages of {request.url}",
                policy=self.retry_policy,
                sleep=self._sleep,
                logger=log,
            )
            last_page = min(total_pages, request.last_page_requested)
            lifecycle.record_progress(total_pages=total_pages)
            log.info("pagination_resolved", total_pages=total_pages, first_page=request.start, last_page=last_page)

            items = 0
            visited = 0
            for page in range(request.start, last_page + 1):
                if cancel_signal.is_set():
                    raise JobCancelled(job.id)
                items += await self._crawl_page(job, adapter, request, page, destinations, log)
                visited += 1
                lifecycle.record_progress(processed_pages=visited, items_found=items, items_processed=items)
                if page < last_page:
                    await self._sleep(self.page_delay)

            lifecycle.mark_completed(items_found=items, items_processed=items)
            log.info("job_completed", pages=visited, items=items)
            self._record_event("info", "Job completed", job, pages=visited, items=items)
        finally:
            try:
                await adapter.cleanup()
            except Exception as exc:  # noqa: BLE001
                log.warning("adapter_cleanup_failed", error=str(exc))

    async def _crawl_page(
        self,
        job: Job,
        adapter: SourceAdapter,
        request: JobRequest,
        page: int,
        destinations: Sequence[tuple[str, BaseExporter]],
        log: structlog.BoundLogger,
    ) -> int:
        """Fetch one page and fan its records out; a failing page counts zero."""

        page_url: str | None = None
        try:
            page_url = adapter.get_page_url(request.url, page)
            records = await with_retry(
                lambda: adapter.scrape_property_list(page_url),
                label=f"page {page} ({page_url})",
                policy=self.retry_policy,
                sleep=self._sleep,
                logger=log,
            )
        except Exception as exc:  # noqa: BLE001
            log.error("page_skipped", page=page, url=page_url, error=str(exc))
            self._record_event("warning", f"Page {page} skipped", job, url=page_url, error=str(exc))
            return 0

        log.info("page_scraped", page=page, url=page_url, records=len(records))
        if records:
            outcomes = await fan_out(records, destinations, job_id=job.id, logger=log)
            for outcome in outcomes:
                if not outcome.ok:
                    self._record_event(
                        "error",
                        f"Export to {outcome.destination} failed",
                        job,
                        destination=outcome.destination,
                        page=page,
                        error=outcome.error,
                    )
        return len(records)


__all__ = ["JobCancelled", "Orchestrator"]
