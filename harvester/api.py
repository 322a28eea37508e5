"""FastAPI boundary surface over the orchestrator."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .exporters import ExporterRegistry
from .infra import SQLiteManager
from .jobs import JobEventLog, JobRequest, JobStatus
from .orchestrator import Orchestrator
from .scheduler import APSchedulerAdapter


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, "message": message})


def _validation_message(exc: RequestValidationError | ValidationError) -> str:
    parts = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts) or "Invalid request"


def create_app(
    orchestrator: Orchestrator,
    *,
    events: JobEventLog | None = None,
    scheduler: APSchedulerAdapter | None = None,
    exporters: ExporterRegistry | None = None,
    storage: SQLiteManager | None = None,
) -> FastAPI:
    """Build the HTTP app; its lifespan starts the scheduler and releases resources on exit."""

    logger = structlog.get_logger("harvester.api")
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        logger.info("api_started")
        yield
        await orchestrator.shutdown()
        if scheduler is not None:
            scheduler.shutdown()
        if exporters is not None:
            exporters.close()
        if storage is not None:
            storage.close_all()
        logger.info("api_stopped")

    app = FastAPI(title="Harvester", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Validation error", _validation_message(exc))

    @app.exception_handler(Exception)
    async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("api_unhandled_error", path=request.url.path, error=str(exc))
        return _error(500, "Internal server error", str(exc))

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    @app.post("/scrape", status_code=201)
    async def start_scrape(payload: dict[str, Any] = Body(...)) -> Any:
        try:
            request = JobRequest.model_validate(payload)
            job = await orchestrator.submit(request)
        except ValidationError as exc:
            return _error(400, "Validation error", _validation_message(exc))
        except ValueError as exc:
            return _error(400, "Validation error", str(exc))
        return {
            "success": True,
            "message": "Scraping job started",
            "data": {"job_id": job.id, "status": job.status.value},
        }

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str) -> Any:
        job = orchestrator.get_job_status(job_id)
        if job is None:
            return _error(404, "Not found", f"Job {job_id} not found")
        return {"success": True, "data": job.model_dump(mode="json")}

    @app.get("/jobs")
    async def list_jobs(
        status: Optional[JobStatus] = Query(None),
        limit: int = Query(50, ge=1, le=100),
        offset: int = Query(0, ge=0),
        source: Optional[str] = Query(None),
    ) -> Any:
        jobs = orchestrator.list_jobs(status=status, limit=limit, offset=offset, source_code=source)
        return {
            "success": True,
            "data": {
                "jobs": [job.model_dump(mode="json") for job in jobs],
                "pagination": {"limit": limit, "offset": offset, "count": len(jobs)},
            },
        }

    @app.post("/jobs/{job_id}/cancel", status_code=202)
    async def cancel_job(job_id: str) -> Any:
        if orchestrator.cancel(job_id):
            return {"success": True, "message": f"Cancellation requested for job {job_id}"}
        if orchestrator.get_job_status(job_id) is None:
            return _error(404, "Not found", f"Job {job_id} not found")
        return _error(409, "Conflict", f"Job {job_id} is not running")

    # ------------------------------------------------------------------
    # Service
    # ------------------------------------------------------------------
    @app.get("/stats")
    async def stats() -> Any:
        return {"success": True, "data": orchestrator.statistics()}

    @app.get("/logs")
    async def logs(
        level: Optional[str] = Query(None),
        source: Optional[str] = Query(None),
        job_id: Optional[str] = Query(None),
        limit: int = Query(100, ge=1, le=1000),
        offset: int = Query(0, ge=0),
    ) -> Any:
        if events is None:
            return {"success": True, "data": []}
        entries = events.list(level=level, source=source, job_id=job_id, limit=limit, offset=offset)
        return {"success": True, "data": [entry.to_dict() for entry in entries]}

    @app.get("/health")
    async def health() -> Any:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - started, 3),
        }

    return app


__all__ = ["create_app"]
