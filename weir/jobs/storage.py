"""Persistence model for resumable ingestion jobs."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import enum
import uuid

from sqlalchemy import JSON, BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from weir.bronze.storage import Base, UTCDateTime
from weir.common.time import utcnow


class JobStatus(enum.StrEnum):
    """Lifecycle states of an ingestion job."""

    PENDING = "pending"
    RUNNING = "running"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` for states no transition leaves."""
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class JobTrigger(enum.StrEnum):
    """What started an ingestion job."""

    MANUAL = "manual"
    CRON = "cron"
    WEBHOOK = "webhook"
    MAINTENANCE = "maintenance"
    RECOVERY = "recovery"


def _new_job_id() -> str:
    return str(uuid.uuid4())


class IngestionJob(Base):
    """Durable progress record of one backfill run.

    ``repos_remaining`` holds the ordered work still to do; the repository
    being processed stays at its head until it is finished, so a resumed
    job continues exactly where it paused.
    """

    __tablename__ = "ingestion_jobs"
    __table_args__ = (
        Index("ix_ingestion_jobs_user_created", "user_id", "created_at"),
        Index("ix_ingestion_jobs_status", "status"),
        Index("ix_ingestion_jobs_installation", "installation_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_job_id)
    user_id: Mapped[str] = mapped_column(String(255))
    label: Mapped[str] = mapped_column(String(255))
    installation_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    trigger: Mapped[str] = mapped_column(
        String(16), default=JobTrigger.MANUAL.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), default=JobStatus.PENDING.value, nullable=False
    )
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    events_ingested: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    embeddings_created: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    repos_remaining: Mapped[list[str]] = mapped_column(JSON, default=list)
    repos_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cursor: Mapped[str | None] = mapped_column(String(255), default=None)
    since: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    until: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    rate_limit_remaining: Mapped[int | None] = mapped_column(Integer, default=None)
    rate_limit_reset: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    blocked_until: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    error_message: Mapped[str | None] = mapped_column(Text(), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    last_updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow
    )
