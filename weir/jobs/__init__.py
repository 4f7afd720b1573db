"""Resumable ingestion job tracking."""

from __future__ import annotations

from .coordinator import ZOMBIE_MESSAGE, ZOMBIE_TIMEOUT, IngestionJobCoordinator
from .errors import JobNotFoundError, JobTransitionError
from .storage import ACTIVE_STATUSES, IngestionJob, JobStatus, JobTrigger

__all__ = [
    "ACTIVE_STATUSES",
    "ZOMBIE_MESSAGE",
    "ZOMBIE_TIMEOUT",
    "IngestionJob",
    "IngestionJobCoordinator",
    "JobNotFoundError",
    "JobStatus",
    "JobTransitionError",
    "JobTrigger",
]
