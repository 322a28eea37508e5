"""Background scheduling for housekeeping."""

from .apsched_adapter import HOUSEKEEPING_JOB_ID, APSchedulerAdapter, Housekeeper

__all__ = ["APSchedulerAdapter", "HOUSEKEEPING_JOB_ID", "Housekeeper"]
