"""Typer CLI entrypoint for Harvester."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import httpx
import typer
import uvicorn
import yaml
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .adapters import AdapterRegistry, register_template_sources
from .api import create_app
from .config import ConfigRepository, GlobalConfig, SourceConfig
from .engine import RateLimiter
from .exporters import ExporterRegistry, build_default_registry
from .infra import SQLiteManager
from .jobs import Job, JobEventLog, JobRequest, JobStatus, SQLiteJobStore
from .logging_conf import available_job_logs, configure_logging, job_log_path, tail_log
from .orchestrator import Orchestrator
from .scheduler import APSchedulerAdapter, Housekeeper

app = typer.Typer(help="Harvester command line tool", no_args_is_help=True, rich_markup_mode=None)
jobs_app = typer.Typer(name="jobs", help="Inspect and control crawl jobs", no_args_is_help=True)
source_app = typer.Typer(name="source", help="Manage source configurations", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Read log files and the job event trail", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config: GlobalConfig
    storage: SQLiteManager
    store: SQLiteJobStore
    events: JobEventLog
    adapters: AdapterRegistry
    exporters: ExporterRegistry
    orchestrator: Orchestrator
    scheduler: APSchedulerAdapter
    housekeeper: Housekeeper


def build_state(verbose: bool, repository: ConfigRepository | None = None) -> AppState:
    configure_logging(verbose=verbose)
    repository = repository or ConfigRepository()
    config = repository.load_global_config()
    storage = SQLiteManager()
    database_path = repository.resolve(config.database_path)
    store = SQLiteJobStore(database_path, storage)
    events = JobEventLog(database_path, storage)

    rate_limiter = RateLimiter.from_config(config.rate_limit)
    adapters = AdapterRegistry()
    register_template_sources(adapters, repository.list_sources(), config.scraping, rate_limiter)
    exporters = build_default_registry(config.exporters, resolve=repository.resolve, manager=storage)

    orchestrator = Orchestrator(
        adapters,
        exporters,
        store,
        events=events,
        scraping=config.scraping,
        jobs=config.jobs,
    )
    housekeeper = Housekeeper(store, events, config.jobs.retention_days)
    scheduler = APSchedulerAdapter()
    scheduler.schedule_housekeeping(housekeeper, config.jobs.housekeeping_interval_hours)
    return AppState(
        repository=repository,
        config=config,
        storage=storage,
        store=store,
        events=events,
        adapters=adapters,
        exporters=exporters,
        orchestrator=orchestrator,
        scheduler=scheduler,
        housekeeper=housekeeper,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _close_state(state: AppState) -> None:
    state.exporters.close()
    state.storage.close_all()


def _render_job_table(job: Job) -> Table:
    table = Table(title=f"Job {job.id}", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("field", style="cyan", no_wrap=True)
    table.add_column("value", overflow="fold")
    rows = [
        ("source", job.source_code),
        ("status", job.status.value),
        ("url", str(job.config.get("url", "-"))),
        ("exporters", ", ".join(job.config.get("exporters", []))),
        ("pages", f"{job.processed_pages} visited / {job.total_pages} total"),
        ("items found", str(job.items_found)),
        ("items processed", str(job.items_processed)),
        ("started", job.started_at.isoformat() if job.started_at else "-"),
        ("completed", job.completed_at.isoformat() if job.completed_at else "-"),
        ("duration", f"{job.duration_ms} ms" if job.duration_ms is not None else "-"),
    ]
    if job.error is not None:
        rows.append(("error", f"{job.error.message} ({job.error.reason})"))
    for field, value in rows:
        table.add_row(field, Text(value))
    return table


def _render_jobs_table(jobs: Iterable[Job]) -> Table:
    table = Table(title="Jobs", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Source", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Pages", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Created", overflow="fold")
    for job in jobs:
        table.add_row(
            job.id,
            job.source_code,
            job.status.value,
            str(job.processed_pages),
            str(job.items_found),
            job.created_at.isoformat(timespec="seconds"),
        )
    return table


app.add_typer(jobs_app, name="jobs")
app.add_typer(source_app, name="source")
app.add_typer(log_app, name="log")


@app.callback()
def main(ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging")) -> None:
    ctx.obj = build_state(verbose)


@app.command("run", help="Run one crawl job in the foreground and print its summary.")
def run(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Listing URL to crawl."),
    source: str = typer.Option(..., "--source", "-s", help="Source code of the adapter to use."),
    exporters: List[str] = typer.Option(["database"], "--exporter", "-e", help="Destination (repeatable)."),
    start: int = typer.Option(1, "--start", help="First page to crawl."),
    limit: int = typer.Option(999, "--limit", help="Maximum number of pages."),
) -> None:
    state = _get_state(ctx)
    try:
        request = JobRequest(url=url, source=source, exporters=exporters, start=start, limit=limit)
    except ValidationError as exc:
        console.print(f"Invalid job request: {exc}", style="red", markup=False)
        raise typer.Exit(code=2)

    async def _run() -> Job:
        try:
            return await state.orchestrator.run(request)
        finally:
            await state.orchestrator.shutdown()

    try:
        job = asyncio.run(_run())
    except ValueError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=2)
    finally:
        _close_state(state)
    console.print(_render_job_table(job))
    if job.status is not JobStatus.COMPLETED:
        raise typer.Exit(code=1)


@app.command("serve", help="Serve the HTTP API with uvicorn.")
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (defaults to api.host)."),
    port: Optional[int] = typer.Option(None, "--port", help="Port (defaults to api.port)."),
) -> None:
    state = _get_state(ctx)
    api = create_app(
        state.orchestrator,
        events=state.events,
        scheduler=state.scheduler,
        exporters=state.exporters,
        storage=state.storage,
    )
    uvicorn.run(api, host=host or state.config.api.host, port=port or state.config.api.port, log_config=None)


@app.command("stats", help="Show job and record counters.")
def stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    data = state.orchestrator.statistics()
    table = Table(title="Statistics", box=box.SIMPLE_HEAD)
    table.add_column("Group", style="cyan")
    table.add_column("Metric", style="magenta")
    table.add_column("Value", justify="right", style="green")
    for group, values in data.items():
        for metric, value in values.items():
            table.add_row(group, metric, str(value))
    console.print(table)


@app.command("housekeeping", help="Delete finished jobs and events past the retention period.")
def housekeeping(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(None, "--days", help="Override jobs.retention_days."),
) -> None:
    state = _get_state(ctx)
    if days is not None:
        state.housekeeper.retention_days = days
    result = state.housekeeper.run()
    console.print(
        f"Removed {result['jobs_removed']} jobs and {result['events_removed']} events "
        f"older than {state.housekeeper.retention_days} days.",
        style="green",
    )


# ----------------------------------------------------------------------
# jobs
# ----------------------------------------------------------------------
@jobs_app.command("list", help="List persisted jobs, newest first.")
def jobs_list(
    ctx: typer.Context,
    status: Optional[JobStatus] = typer.Option(None, "--status", help="Filter by status."),
    source: Optional[str] = typer.Option(None, "--source", help="Filter by source code."),
    limit: int = typer.Option(50, "--limit", min=1, max=100),
    offset: int = typer.Option(0, "--offset", min=0),
) -> None:
    state = _get_state(ctx)
    jobs = state.orchestrator.list_jobs(status=status, limit=limit, offset=offset, source_code=source)
    if not jobs:
        console.print("No jobs recorded yet.", style="yellow")
        return
    console.print(_render_jobs_table(jobs))


@jobs_app.command("show", help="Show one job.")
def jobs_show(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    job = state.orchestrator.get_job_status(job_id)
    if job is None:
        console.print(f"Job `{job_id}` not found.", style="red")
        raise typer.Exit(code=1)
    console.print(_render_job_table(job))


@jobs_app.command("cancel", help="Ask a running server to cancel a job.")
def jobs_cancel(
    ctx: typer.Context,
    job_id: str = typer.Argument(...),
    server: Optional[str] = typer.Option(None, "--server", help="Base URL of the running API."),
) -> None:
    state = _get_state(ctx)
    base_url = server or f"http://{state.config.api.host}:{state.config.api.port}"
    try:
        response = httpx.post(f"{base_url.rstrip('/')}/jobs/{job_id}/cancel", timeout=10.0)
    except httpx.HTTPError as exc:
        console.print(f"Could not reach {base_url}: {exc}", style="red", markup=False)
        raise typer.Exit(code=1)
    payload = response.json()
    if response.status_code >= 400:
        console.print(payload.get("message", response.text), style="red")
        raise typer.Exit(code=1)
    console.print(payload.get("message", "Cancellation requested"), style="green")


# ----------------------------------------------------------------------
# source
# ----------------------------------------------------------------------
@source_app.command("list", help="List configured sources.")
def source_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    sources = state.repository.list_sources()
    if not sources:
        console.print("No sources configured. Add one with `harvester source add FILE`.", style="yellow")
        return
    table = Table(title=f"Sources ({len(sources)})", box=box.SIMPLE_HEAD)
    table.add_column("Code", style="cyan", no_wrap=True)
    table.add_column("Mode", style="magenta")
    table.add_column("Item links", overflow="fold")
    table.add_column("Description", overflow="fold")
    for source in sources:
        table.add_row(
            source.source_code,
            "browser" if source.use_browser else "http",
            source.item_link_pattern,
            source.description or "-",
        )
    console.print(table)


@source_app.command("add", help="Validate a YAML source definition and store it.")
def source_add(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML file describing the source."),
) -> None:
    state = _get_state(ctx)
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        console.print("Source file must contain a mapping.", style="red")
        raise typer.Exit(code=1)
    try:
        config = SourceConfig.model_validate(payload)
    except ValidationError as exc:
        console.print(f"Invalid source definition: {exc}", style="red", markup=False)
        raise typer.Exit(code=1)
    stored = state.repository.save_source(config)
    console.print(f"Source `{config.source_code}` saved to {stored}.", style="green")


@source_app.command("remove", help="Delete a source configuration.")
def source_remove(
    ctx: typer.Context,
    source_code: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt."),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm(f"Delete source `{source_code}`?", default=False):
        console.print("Nothing deleted.", style="yellow")
        raise typer.Exit(code=0)
    if not state.repository.delete_source(source_code):
        console.print(f"Source `{source_code}` not found.", style="red")
        raise typer.Exit(code=1)
    console.print(f"Source `{source_code}` deleted.", style="green")


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
@log_app.command("list", help="List per-job log files.")
def log_list() -> None:
    logs = list(available_job_logs())
    if not logs:
        console.print("No job logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("tail", help="Print the last lines of the application or a job log.")
def log_tail(
    ctx: typer.Context,
    job_id: Optional[str] = typer.Option(None, "--job", help="Job id (defaults to the application log)."),
    lines: int = typer.Option(100, "--lines", "-n", min=1),
) -> None:
    state = _get_state(ctx)
    path = job_log_path(job_id) if job_id else state.repository.locator.logs_dir / "harvester.log"
    content = tail_log(path, lines)
    if not content:
        console.print("No log lines yet.", style="dim")
        return
    console.print("".join(content), end="", markup=False, highlight=False)


@log_app.command("events", help="Show the persisted job event trail.")
def log_events(
    ctx: typer.Context,
    job_id: Optional[str] = typer.Option(None, "--job"),
    level: Optional[str] = typer.Option(None, "--level"),
    source: Optional[str] = typer.Option(None, "--source"),
    limit: int = typer.Option(50, "--limit", min=1),
) -> None:
    state = _get_state(ctx)
    entries = state.events.list(level=level, source=source, job_id=job_id, limit=limit)
    if not entries:
        console.print("No events recorded.", style="dim")
        return
    table = Table(title="Job events", box=box.SIMPLE_HEAD)
    table.add_column("When", no_wrap=True)
    table.add_column("Level", style="magenta")
    table.add_column("Job", style="cyan", overflow="fold")
    table.add_column("Message", overflow="fold")
    for entry in entries:
        table.add_row(
            entry.created_at.isoformat(timespec="seconds"),
            entry.level,
            entry.job_id or "-",
            entry.message,
        )
    console.print(table)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
