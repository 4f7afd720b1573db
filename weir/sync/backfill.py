"""Resumable historical backfill of repository activity.

A backfill job walks its ``repos_remaining`` list in order. For each
repository it pages through issue and pull request activity in the job's
window, then pages through the window's commits, persisting canonical facts
as it goes. The commit stage keeps its own cursor (``commits`` or
``commits:<page>``). The job row is patched after every page, so a paused
or crashed run resumes from the last durable cursor.

Before each GitHub call the runner checks the installation's quota. When the
budget is exhausted, or GitHub answers with a transient failure, the job is
blocked until the reset time with the current repository left at the head of
``repos_remaining``.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from weir.common.time import utcnow
from weir.github.client import SEARCH_PAGE_SIZE
from weir.github.errors import GitHubAPIError, GitHubResponseShapeError
from weir.github.ratelimit import RateLimitTracker, blocked_until_for, should_pause
from weir.jobs.coordinator import IngestionJobCoordinator
from weir.jobs.storage import JobStatus, JobTrigger
from weir.logging import get_logger, log_debug
from weir.silver.canonicalize import (
    canonicalize_commits,
    canonicalize_timeline_item,
    repository_from_payload,
)
from weir.silver.services import CanonicalFactService, PersistStatus
from weir.sync.config import BackfillConfig
from weir.sync.errors import BackfillRequestError
from weir.sync.observability import IngestionEventLogger, is_retryable

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from weir.github.client import GitHubActivityClient
    from weir.jobs.storage import IngestionJob
    from weir.silver.canonicalize import CanonicalEvent

logger = get_logger(__name__)

type Clock = typ.Callable[[], dt.datetime]

COMMITS_CURSOR = "commits"
RUNNING_PROGRESS_CAP = 99
_TIMELINE_SHARE = 0.8


class ContinuationScheduler(typ.Protocol):
    """Arrange for :meth:`BackfillRunner.continue_job` to run later."""

    def schedule(self, job_id: str, at: dt.datetime) -> None:
        """Request a continuation of ``job_id`` at ``at``."""
        ...


@dc.dataclass(frozen=True, slots=True)
class BackfillOutcome:
    """Where a backfill invocation left its job."""

    job_id: str | None
    status: JobStatus | None
    events_ingested: int = 0
    blocked_until: dt.datetime | None = None
    error: str | None = None


class _Paused(Exception):  # noqa: N818 - control flow, never escapes the runner
    def __init__(self, blocked_until: dt.datetime, reason: str) -> None:
        self.blocked_until = blocked_until
        self.reason = reason
        super().__init__(reason)


@dc.dataclass(slots=True)
class _RunState:
    job_id: str
    installation_id: int | None
    since: dt.datetime
    until: dt.datetime
    repos_total: int
    repos: list[str]
    cursor: str | None
    events_ingested: int


def _progress(state: _RunState, within_repo: float) -> int:
    if state.repos_total <= 0:
        return 0
    done = state.repos_total - len(state.repos)
    value = int(100 * (done + within_repo) / state.repos_total)
    return min(value, RUNNING_PROGRESS_CAP)


def _timeline_fraction(cursor: str | None, total_count: int | None) -> float:
    if cursor is None or not total_count:
        return _TIMELINE_SHARE
    fetched = (int(cursor) - 1) * SEARCH_PAGE_SIZE
    return _TIMELINE_SHARE * min(fetched / total_count, 1.0)


def _in_commit_stage(cursor: str | None) -> bool:
    return cursor is not None and cursor.partition(":")[0] == COMMITS_CURSOR


def _commit_cursor(page: int) -> str:
    return COMMITS_CURSOR if page <= 1 else f"{COMMITS_CURSOR}:{page}"


def _commit_page(cursor: str | None) -> int:
    _, _, page = (cursor or "").partition(":")
    return int(page) if page.isdigit() else 1


def _dedupe(repos: cabc.Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for repo in repos:
        name = repo.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


class BackfillRunner:
    """Create and drive backfill jobs against the GitHub REST API.

    Parameters
    ----------
    session_factory
        Async session factory bound to the ingestion store.
    client
        GitHub client used for repository, timeline and commit reads.
    config
        Limits for repositories per job, quota floor and default window.
    scheduler
        Optional hook that re-invokes :meth:`continue_job` at a wake time.
    clock
        Source of the current UTC time; injectable for tests.

    """

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: GitHubActivityClient,
        *,
        config: BackfillConfig | None = None,
        coordinator: IngestionJobCoordinator | None = None,
        facts: CanonicalFactService | None = None,
        tracker: RateLimitTracker | None = None,
        scheduler: ContinuationScheduler | None = None,
        events: IngestionEventLogger | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Wire collaborators, defaulting each to one over ``session_factory``."""
        self._client = client
        self._config = config or BackfillConfig()
        self._clock = clock
        self._coordinator = coordinator or IngestionJobCoordinator(
            session_factory, clock=clock
        )
        self._facts = facts or CanonicalFactService(session_factory)
        self._tracker = tracker or RateLimitTracker(session_factory)
        self._scheduler = scheduler
        self._events = events or IngestionEventLogger()

    async def start(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        repos: cabc.Sequence[str],
        installation_id: int | None = None,
        since: dt.datetime | None = None,
        until: dt.datetime | None = None,
        trigger: JobTrigger = JobTrigger.MANUAL,
    ) -> BackfillOutcome:
        """Create a running job for ``repos`` and process as much as quota allows.

        Raises
        ------
        BackfillRequestError
            If no repositories are given, more than ``max_repos`` are given,
            or the window is empty.

        """
        names = _dedupe(repos)
        if not names:
            raise BackfillRequestError.no_repositories()
        if len(names) > self._config.max_repos:
            raise BackfillRequestError.too_many_repositories(
                len(names), self._config.max_repos
            )

        window_end = until or self._clock()
        window_start = since or window_end - self._config.lookback
        if window_start >= window_end:
            raise BackfillRequestError.invalid_window(window_start, window_end)

        job = await self._coordinator.create(
            user_id=user_id,
            label=names[0] if len(names) == 1 else f"{len(names)} repositories",
            repos=names,
            installation_id=installation_id,
            trigger=trigger,
            status=JobStatus.RUNNING,
            since=window_start,
            until=window_end,
        )
        self._events.log_job_started(job.id, job.label, job.repos_total)
        return await self._run(job)

    async def continue_job(self, job_id: str) -> BackfillOutcome:
        """Resume a due blocked job or start a pending one.

        Missing jobs, terminal jobs, running jobs and blocked jobs whose
        wake time is still ahead are left untouched. The move to ``running``
        is a claim: when two continuations race for one job, only the
        winner runs it and the other reports the job as it finds it.
        """
        job = await self._coordinator.get(job_id)
        if job is None:
            return BackfillOutcome(job_id=job_id, status=None)

        status = JobStatus(job.status)
        if status is JobStatus.BLOCKED:
            if job.blocked_until is not None and job.blocked_until > self._clock():
                log_debug(logger, "Job %s still blocked until %s", job_id, job.blocked_until)
                return self._outcome(job)
            claimed = await self._coordinator.claim(
                job_id, JobStatus.BLOCKED, job.repos_remaining
            )
        elif status is JobStatus.PENDING:
            claimed = await self._coordinator.claim(job_id, JobStatus.PENDING)
        else:
            return self._outcome(job)

        refreshed = await self._coordinator.get(job_id)
        if refreshed is None:
            return BackfillOutcome(job_id=job_id, status=None)
        if not claimed:
            log_debug(logger, "Job %s already claimed by another continuation", job_id)
            return self._outcome(refreshed)
        if status is JobStatus.BLOCKED:
            self._events.log_job_resumed(job_id, len(job.repos_remaining))
        else:
            self._events.log_job_started(job_id, job.label, job.repos_total)
        return await self._run(refreshed)

    async def _run(self, job: IngestionJob) -> BackfillOutcome:
        now = self._clock()
        state = _RunState(
            job_id=job.id,
            installation_id=job.installation_id,
            since=job.since or now - self._config.lookback,
            until=job.until or now,
            repos_total=job.repos_total or len(job.repos_remaining),
            repos=list(job.repos_remaining),
            cursor=job.cursor,
            events_ingested=job.events_ingested,
        )
        try:
            while state.repos:
                await self._process_repository(state)
        except _Paused as pause:
            return await self._block(state, pause.blocked_until, pause.reason)
        except Exception as exc:  # noqa: BLE001 - recorded on the job row
            if is_retryable(exc):
                reset_at = exc.reset_at if isinstance(exc, GitHubAPIError) else None
                blocked_until = blocked_until_for(reset_at, now=self._clock())
                return await self._block(state, blocked_until, str(exc))
            return await self._fail(state, exc)

        completed = await self._coordinator.complete(
            state.job_id, events_ingested=state.events_ingested
        )
        await self._record_sync(state, status="idle")
        started = completed.started_at or completed.created_at
        self._events.log_job_completed(
            state.job_id, completed.events_ingested, self._clock() - started
        )
        return self._outcome(completed)

    async def _process_repository(self, state: _RunState) -> None:
        full_name = state.repos[0]
        await self._check_budget(state)
        repo = repository_from_payload(await self._client.get_repository(full_name))
        if repo is None:
            raise GitHubResponseShapeError.missing("full_name")

        while not _in_commit_stage(state.cursor):
            await self._check_budget(state)
            page = await self._client.search_timeline(
                full_name, since=state.since, until=state.until, cursor=state.cursor
            )
            canonical = [
                event
                for event in (
                    canonicalize_timeline_item(item, repo) for item in page.items
                )
                if event is not None
            ]
            inserted, duplicates = await self._persist(state, canonical)
            next_cursor = page.next_cursor or COMMITS_CURSOR
            await self._record_page(
                state,
                next_cursor,
                _timeline_fraction(page.next_cursor, page.total_count),
                etag=page.etag,
            )
            self._events.log_page_persisted(
                state.job_id,
                full_name,
                len(page.items),
                inserted,
                duplicates,
                page.next_cursor,
            )

        commit_page: int | None = _commit_page(state.cursor)
        while commit_page is not None:
            await self._check_budget(state)
            listing = await self._client.list_commits(
                full_name, since=state.since, until=state.until, page=commit_page
            )
            inserted, duplicates = await self._persist(
                state, canonicalize_commits(listing.items, repo)
            )
            commit_page = listing.next_page
            next_cursor = (
                _commit_cursor(commit_page) if commit_page is not None else None
            )
            self._events.log_page_persisted(
                state.job_id,
                full_name,
                len(listing.items),
                inserted,
                duplicates,
                next_cursor,
            )
            if next_cursor is not None:
                await self._record_page(state, next_cursor, _TIMELINE_SHARE, etag=None)

        state.repos.pop(0)
        state.cursor = None
        await self._coordinator.advance_repository(
            state.job_id,
            state.repos,
            _progress(state, 0.0),
            events_ingested=state.events_ingested,
        )
        await self._record_rate_limit(state)

    async def _persist(
        self, state: _RunState, canonical: list[CanonicalEvent]
    ) -> tuple[int, int]:
        inserted = duplicates = 0
        for event in canonical:
            result = await self._facts.persist_canonical_event(
                event, installation_id=state.installation_id
            )
            if result.status is PersistStatus.INSERTED:
                inserted += 1
            elif result.status is PersistStatus.DUPLICATE:
                duplicates += 1
        state.events_ingested += inserted
        return inserted, duplicates

    async def _record_page(
        self,
        state: _RunState,
        next_cursor: str,
        within_repo: float,
        *,
        etag: str | None,
    ) -> None:
        state.cursor = next_cursor
        rate_limit = self._client.last_rate_limit
        await self._coordinator.update_progress(
            state.job_id,
            _progress(state, within_repo),
            events_ingested=state.events_ingested,
            cursor=next_cursor,
            rate_limit_remaining=rate_limit.remaining if rate_limit else None,
            rate_limit_reset=rate_limit.reset_at if rate_limit else None,
        )
        await self._record_rate_limit(state)
        await self._record_sync(state, status="syncing", cursor=next_cursor, etag=etag)

    async def _record_rate_limit(self, state: _RunState) -> None:
        if state.installation_id is not None:
            await self._tracker.record(state.installation_id, self._client.last_rate_limit)

    async def _record_sync(
        self,
        state: _RunState,
        *,
        status: str,
        cursor: str | None = None,
        etag: str | None = None,
    ) -> None:
        if state.installation_id is None:
            return
        await self._tracker.update_sync_state(
            state.installation_id,
            last_cursor=cursor,
            etag=etag,
            last_synced_at=self._clock(),
            status=status,
        )

    async def _check_budget(self, state: _RunState) -> None:
        budget = self._client.last_rate_limit
        if budget is None and state.installation_id is not None:
            budget = await self._tracker.get_budget(state.installation_id)
        now = self._clock()
        if should_pause(budget, now=now, min_budget=self._config.min_budget):
            reset_at = budget.reset_at if budget is not None else None
            raise _Paused(blocked_until_for(reset_at, now=now), "rate_limit")

    async def _block(
        self, state: _RunState, blocked_until: dt.datetime, reason: str
    ) -> BackfillOutcome:
        rate_limit = self._client.last_rate_limit
        job = await self._coordinator.block(
            state.job_id,
            blocked_until,
            state.repos,
            cursor=state.cursor,
            rate_limit_remaining=rate_limit.remaining if rate_limit else None,
            rate_limit_reset=rate_limit.reset_at if rate_limit else None,
        )
        await self._record_sync(state, status="blocked")
        self._events.log_job_blocked(
            state.job_id, blocked_until, len(state.repos), reason
        )
        if self._scheduler is not None:
            self._scheduler.schedule(state.job_id, blocked_until)
        return self._outcome(job)

    async def _fail(self, state: _RunState, exc: Exception) -> BackfillOutcome:
        job = await self._coordinator.fail(state.job_id, str(exc))
        await self._record_sync(state, status="error")
        self._events.log_job_failed(state.job_id, exc)
        return self._outcome(job)

    @staticmethod
    def _outcome(job: IngestionJob) -> BackfillOutcome:
        return BackfillOutcome(
            job_id=job.id,
            status=JobStatus(job.status),
            events_ingested=job.events_ingested,
            blocked_until=job.blocked_until,
            error=job.error_message,
        )

