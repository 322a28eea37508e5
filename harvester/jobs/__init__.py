"""Job model, lifecycle, persistence and event trail."""

from .events import JobEvent, JobEventLog
from .lifecycle import JobLifecycle
from .models import Job, JobError, JobRequest, JobStatus, JobView
from .store import JobStore, SQLiteJobStore

__all__ = [
    "Job",
    "JobError",
    "JobEvent",
    "JobEventLog",
    "JobLifecycle",
    "JobRequest",
    "JobStatus",
    "JobStore",
    "JobView",
    "SQLiteJobStore",
]
