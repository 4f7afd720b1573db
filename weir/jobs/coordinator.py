"""State machine and persistence for resumable ingestion jobs.

Jobs move ``pending -> running -> completed``; a running job may pause as
``blocked`` until a wake time and then resume, and any non-terminal job may
fail. ``completed`` and ``failed`` are terminal. Every mutation is a single
commit so the row always reflects the last durable step of a run.
"""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import func, literal, select, update

from weir.bronze.storage import UTCDateTime
from weir.common.time import utcnow
from weir.jobs.errors import JobNotFoundError, JobTransitionError
from weir.jobs.storage import ACTIVE_STATUSES, IngestionJob, JobStatus, JobTrigger
from weir.logging import get_logger, log_debug, log_info, log_warning

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

type Clock = typ.Callable[[], dt.datetime]

ZOMBIE_TIMEOUT = dt.timedelta(minutes=10)
ZOMBIE_MESSAGE = "Job timed out (zombie detection)"
_DEFAULT_LIST_LIMIT = 10
_DUE_BLOCKED_LIMIT = 100
_CLAIMABLE = frozenset({JobStatus.PENDING, JobStatus.BLOCKED})

_ALLOWED_SOURCES: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.RUNNING: frozenset({JobStatus.PENDING, JobStatus.RUNNING}),
    JobStatus.COMPLETED: frozenset({JobStatus.PENDING, JobStatus.RUNNING}),
    JobStatus.FAILED: frozenset(
        {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.BLOCKED}
    ),
    JobStatus.BLOCKED: frozenset(
        {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.BLOCKED}
    ),
}


def _clamp_progress(value: int) -> int:
    return max(0, min(100, value))


def _raise_counter(current: int, value: int | None) -> int:
    return current if value is None else max(current, value)


class IngestionJobCoordinator:
    """Create, advance and query ingestion jobs.

    Parameters
    ----------
    session_factory
        Async session factory bound to the job store.
    clock
        Source of the current UTC time; injectable for tests.

    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
    ) -> None:
        """Store the session factory and clock."""
        self._session_factory = session_factory
        self._clock = clock

    async def create(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        label: str,
        repos: cabc.Sequence[str],
        installation_id: int | None = None,
        trigger: JobTrigger = JobTrigger.MANUAL,
        status: JobStatus = JobStatus.PENDING,
        since: dt.datetime | None = None,
        until: dt.datetime | None = None,
    ) -> IngestionJob:
        """Insert a new job in ``pending`` or ``running`` state."""
        if status not in ACTIVE_STATUSES:
            raise JobTransitionError.invalid("<new>", "none", status)

        now = self._clock()
        job = IngestionJob(
            user_id=user_id,
            label=label,
            installation_id=installation_id,
            trigger=trigger.value,
            status=status.value,
            progress=0,
            events_ingested=0,
            embeddings_created=0,
            repos_remaining=list(repos),
            repos_total=len(repos),
            since=since,
            until=until,
            created_at=now,
            started_at=now if status is JobStatus.RUNNING else None,
            last_updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
        log_info(
            logger,
            "Created ingestion job %s (%s) for %d repositories",
            job.id,
            trigger.value,
            len(repos),
        )
        return job

    async def get(self, job_id: str) -> IngestionJob | None:
        """Return the job or ``None`` when it does not exist."""
        async with self._session_factory() as session:
            return await session.get(IngestionJob, job_id)

    async def start(self, job_id: str) -> IngestionJob:
        """Move a pending job to ``running``."""
        async with self._session_factory() as session:
            job = await self._load_for(session, job_id, JobStatus.RUNNING)
            now = self._clock()
            job.status = JobStatus.RUNNING.value
            job.started_at = job.started_at or now
            job.last_updated_at = now
            await session.commit()
            return job

    async def update_progress(
        self,
        job_id: str,
        progress: int,
        *,
        events_ingested: int | None = None,
        embeddings_created: int | None = None,
        cursor: str | None = None,
        rate_limit_remaining: int | None = None,
        rate_limit_reset: dt.datetime | None = None,
    ) -> IngestionJob:
        """Record progress without ever moving it backwards.

        ``progress`` is clamped to 0-100. Counters are absolute totals and
        are likewise never lowered. ``cursor`` is stored only when given.
        """
        async with self._session_factory() as session:
            job = await self._load_for(session, job_id, JobStatus.RUNNING)
            job.progress = max(job.progress, _clamp_progress(progress))
            job.events_ingested = _raise_counter(job.events_ingested, events_ingested)
            job.embeddings_created = _raise_counter(
                job.embeddings_created, embeddings_created
            )
            if cursor is not None:
                job.cursor = cursor
            if rate_limit_remaining is not None:
                job.rate_limit_remaining = rate_limit_remaining
            if rate_limit_reset is not None:
                job.rate_limit_reset = rate_limit_reset
            job.last_updated_at = self._clock()
            await session.commit()
            return job

    async def advance_repository(
        self,
        job_id: str,
        repos_remaining: cabc.Sequence[str],
        progress: int,
        *,
        events_ingested: int | None = None,
    ) -> IngestionJob:
        """Drop finished repositories from the job and reset its cursor."""
        async with self._session_factory() as session:
            job = await self._load_for(session, job_id, JobStatus.RUNNING)
            job.repos_remaining = list(repos_remaining)
            job.cursor = None
            job.progress = max(job.progress, _clamp_progress(progress))
            job.events_ingested = _raise_counter(job.events_ingested, events_ingested)
            job.last_updated_at = self._clock()
            await session.commit()
            return job

    async def complete(
        self,
        job_id: str,
        *,
        events_ingested: int | None = None,
        embeddings_created: int | None = None,
    ) -> IngestionJob:
        """Mark the job ``completed`` at 100% progress."""
        async with self._session_factory() as session:
            job = await self._load_for(session, job_id, JobStatus.COMPLETED)
            now = self._clock()
            job.status = JobStatus.COMPLETED.value
            job.progress = 100
            job.events_ingested = _raise_counter(job.events_ingested, events_ingested)
            job.embeddings_created = _raise_counter(
                job.embeddings_created, embeddings_created
            )
            job.repos_remaining = []
            job.cursor = None
            job.blocked_until = None
            job.completed_at = now
            job.last_updated_at = now
            await session.commit()
        log_info(
            logger,
            "Ingestion job %s completed with %d events",
            job_id,
            job.events_ingested,
        )
        return job

    async def fail(self, job_id: str, error_message: str) -> IngestionJob:
        """Mark the job terminally ``failed`` with ``error_message``."""
        async with self._session_factory() as session:
            job = await self._load_for(session, job_id, JobStatus.FAILED)
            now = self._clock()
            job.status = JobStatus.FAILED.value
            job.error_message = error_message
            job.blocked_until = None
            job.completed_at = now
            job.last_updated_at = now
            await session.commit()
        log_warning(logger, "Ingestion job %s failed: %s", job_id, error_message)
        return job

    async def block(  # noqa: PLR0913
        self,
        job_id: str,
        blocked_until: dt.datetime,
        repos_remaining: cabc.Sequence[str],
        *,
        cursor: str | None = None,
        rate_limit_remaining: int | None = None,
        rate_limit_reset: dt.datetime | None = None,
    ) -> IngestionJob:
        """Pause the job until ``blocked_until``, storing the exact remaining work.

        ``cursor`` is the resume point inside the head repository and is
        stored as given; ``None`` means the repository restarts from its
        first page.
        """
        async with self._session_factory() as session:
            job = await self._load_for(session, job_id, JobStatus.BLOCKED)
            job.status = JobStatus.BLOCKED.value
            job.blocked_until = blocked_until
            job.repos_remaining = list(repos_remaining)
            job.cursor = cursor
            if rate_limit_remaining is not None:
                job.rate_limit_remaining = rate_limit_remaining
            if rate_limit_reset is not None:
                job.rate_limit_reset = rate_limit_reset
            job.last_updated_at = self._clock()
            await session.commit()
        log_info(
            logger,
            "Ingestion job %s blocked until %s with %d repositories remaining",
            job_id,
            blocked_until.isoformat(),
            len(repos_remaining),
        )
        return job

    async def resume(self, job_id: str, repos_remaining: cabc.Sequence[str]) -> bool:
        """Return a blocked or pending job to ``running``.

        Returns ``False`` without writing when the job no longer exists or
        is already terminal. Otherwise performs one write that clears
        ``blocked_until``, overwrites ``repos_remaining`` and backfills
        ``started_at`` from ``created_at``. Repeated calls are harmless.
        """
        async with self._session_factory() as session:
            job = await session.get(IngestionJob, job_id)
            if job is None or JobStatus(job.status).is_terminal:
                return False
            job.status = JobStatus.RUNNING.value
            job.blocked_until = None
            job.repos_remaining = list(repos_remaining)
            job.started_at = job.started_at or job.created_at
            job.last_updated_at = self._clock()
            await session.commit()
        return True

    async def claim(
        self,
        job_id: str,
        expected: JobStatus,
        repos_remaining: cabc.Sequence[str] | None = None,
    ) -> bool:
        """Move a ``pending`` or ``blocked`` job to ``running`` atomically.

        The status check and the write are one conditional ``UPDATE``, so of
        several concurrent callers only one receives ``True``; the rest leave
        the row untouched. A claimed blocked job has ``blocked_until``
        cleared and, when given, ``repos_remaining`` overwritten.
        """
        if expected not in _CLAIMABLE:
            raise JobTransitionError.invalid(job_id, expected, JobStatus.RUNNING)

        now = self._clock()
        fallback_start = (
            IngestionJob.created_at
            if expected is JobStatus.BLOCKED
            else literal(now, UTCDateTime())
        )
        values: dict[str, typ.Any] = {
            "status": JobStatus.RUNNING.value,
            "blocked_until": None,
            "started_at": func.coalesce(IngestionJob.started_at, fallback_start),
            "last_updated_at": now,
        }
        if repos_remaining is not None:
            values["repos_remaining"] = list(repos_remaining)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(IngestionJob)
                .where(
                    IngestionJob.id == job_id,
                    IngestionJob.status == expected.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            return False
        log_debug(logger, "Claimed %s ingestion job %s", expected.value, job_id)
        return True

    async def list_active(
        self, user_id: str, *, limit: int = _DEFAULT_LIST_LIMIT
    ) -> list[IngestionJob]:
        """Return the user's pending and running jobs, newest first."""
        async with self._session_factory() as session:
            result = await session.scalars(
                select(IngestionJob)
                .where(
                    IngestionJob.user_id == user_id,
                    IngestionJob.status.in_([status.value for status in ACTIVE_STATUSES]),
                )
                .order_by(IngestionJob.created_at.desc())
                .limit(limit)
            )
            return list(result)

    async def list_recent(
        self, user_id: str, *, limit: int = _DEFAULT_LIST_LIMIT
    ) -> list[IngestionJob]:
        """Return the user's jobs in any state, newest first."""
        async with self._session_factory() as session:
            result = await session.scalars(
                select(IngestionJob)
                .where(IngestionJob.user_id == user_id)
                .order_by(IngestionJob.created_at.desc())
                .limit(limit)
            )
            return list(result)

    async def get_active_for_installation(
        self, installation_id: int
    ) -> IngestionJob | None:
        """Return a running, else pending, else blocked job for the installation."""
        async with self._session_factory() as session:
            for status in (JobStatus.RUNNING, JobStatus.PENDING, JobStatus.BLOCKED):
                job = await session.scalar(
                    select(IngestionJob)
                    .where(
                        IngestionJob.installation_id == installation_id,
                        IngestionJob.status == status.value,
                    )
                    .order_by(IngestionJob.created_at.desc())
                    .limit(1)
                )
                if job is not None:
                    return job
        return None

    async def find_due_blocked(
        self, now: dt.datetime | None = None, *, limit: int = _DUE_BLOCKED_LIMIT
    ) -> list[IngestionJob]:
        """Return blocked jobs whose wake time has passed, earliest first."""
        cutoff = now or self._clock()
        async with self._session_factory() as session:
            result = await session.scalars(
                select(IngestionJob)
                .where(
                    IngestionJob.status == JobStatus.BLOCKED.value,
                    IngestionJob.blocked_until.is_not(None),
                    IngestionJob.blocked_until <= cutoff,
                )
                .order_by(IngestionJob.blocked_until)
                .limit(limit)
            )
            return list(result)

    async def fail_stale_running(
        self,
        now: dt.datetime | None = None,
        *,
        stale_after: dt.timedelta = ZOMBIE_TIMEOUT,
    ) -> list[str]:
        """Fail running jobs with no progress write within ``stale_after``."""
        current = now or self._clock()
        cutoff = current - stale_after
        async with self._session_factory() as session:
            result = await session.scalars(
                select(IngestionJob).where(
                    IngestionJob.status == JobStatus.RUNNING.value,
                    IngestionJob.last_updated_at < cutoff,
                )
            )
            stale = list(result)
            for job in stale:
                log_warning(logger, "Failing zombie ingestion job %s (%s)", job.id, job.label)
                job.status = JobStatus.FAILED.value
                job.error_message = ZOMBIE_MESSAGE
                job.blocked_until = None
                job.completed_at = current
                job.last_updated_at = current
            if stale:
                await session.commit()
            return [job.id for job in stale]

    @staticmethod
    async def _load_for(
        session: AsyncSession, job_id: str, target: JobStatus
    ) -> IngestionJob:
        job = await session.get(IngestionJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if JobStatus(job.status) not in _ALLOWED_SOURCES[target]:
            raise JobTransitionError.invalid(job_id, job.status, target)
        return job
