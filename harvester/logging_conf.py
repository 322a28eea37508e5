"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Iterable

import structlog

_LOGGING_INITIALISED = False
APP_LOGGER = "harvester"


def _default_log_dir() -> Path:
    env_root = os.environ.get("HARVESTER_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    error_log = log_dir / "error.log"
    app_log = log_dir / "harvester.log"
    (log_dir / "jobs").mkdir(parents=True, exist_ok=True)
    error_log.touch(exist_ok=True)
    app_log.touch(exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": level,
                        "formatter": "plain",
                    },
                    "app_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(app_log),
                        "formatter": "plain",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "plain",
                    },
                },
                "loggers": {
                    APP_LOGGER: {
                        "handlers": ["console", "app_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(APP_LOGGER)


def job_log_path(job_id: str) -> Path:
    return _default_log_dir() / "jobs" / f"{job_id}.log"


def job_logger(job_id: str, source: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to one job, mirrored into ``logs/jobs/<job_id>.log``."""

    configure_logging(verbose)
    path = job_log_path(job_id)
    path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"{APP_LOGGER}.job.{job_id}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(path, encoding="utf-8")
        global_logger = logging.getLogger(APP_LOGGER)
        if global_logger.handlers:
            file_handler.setFormatter(global_logger.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(job_id=job_id, source=source)


def release_job_logger(job_id: str) -> None:
    """Close the per-job file handler and forget the job's logger."""

    logger_name = f"{APP_LOGGER}.job.{job_id}"
    py_logger = logging.getLogger(logger_name)
    for handler in list(py_logger.handlers):
        py_logger.removeHandler(handler)
        handler.close()
    logging.Logger.manager.loggerDict.pop(logger_name, None)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_job_logs() -> Iterable[Path]:
    """Yield available per-job log file paths."""

    jobs_dir = _default_log_dir() / "jobs"
    if not jobs_dir.exists():
        return []
    return sorted(jobs_dir.glob("*.log"))


__all__ = [
    "available_job_logs",
    "configure_logging",
    "job_log_path",
    "job_logger",
    "release_job_logger",
    "tail_log",
]
