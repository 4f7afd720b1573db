"""Unit tests for the resumable backfill runner."""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

import pytest
from sqlalchemy import func, select

from tests.helpers.fake_github import FakeGitHubClient, commits_for, two_page_timeline
from weir.github import (
    DEFAULT_BLOCKED_DELAY,
    GitHubAPIError,
    RateLimitInfo,
    RateLimitTracker,
)
from weir.jobs import IngestionJobCoordinator, JobStatus
from weir.silver import EventFact
from weir.sync import (
    COMMITS_CURSOR,
    BackfillConfig,
    BackfillRequestError,
    BackfillRunner,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

T0 = dt.datetime(2024, 7, 14, 12, 0, tzinfo=dt.UTC)
SINCE = dt.datetime(2024, 7, 1, tzinfo=dt.UTC)
HEALTHY = RateLimitInfo(remaining=4000, reset_at=T0 + dt.timedelta(hours=1))


class FakeClock:
    """Settable UTC clock."""

    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> dt.datetime:
        return self.now


class RecordingScheduler:
    """ContinuationScheduler that remembers requests."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, dt.datetime]] = []

    def schedule(self, job_id: str, at: dt.datetime) -> None:
        self.requests.append((job_id, at))


@pytest.fixture
def clock() -> FakeClock:
    """Return a clock starting at T0."""
    return FakeClock()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    """Return a recording scheduler."""
    return RecordingScheduler()


def _runner(
    session_factory: async_sessionmaker[AsyncSession],
    client: FakeGitHubClient,
    clock: FakeClock,
    scheduler: RecordingScheduler | None = None,
    config: BackfillConfig | None = None,
) -> BackfillRunner:
    return BackfillRunner(
        session_factory, client, config=config, scheduler=scheduler, clock=clock
    )


async def _fact_count(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(EventFact)) or 0


class TestStart:
    """Tests for BackfillRunner.start."""

    @pytest.mark.asyncio
    async def test_completes_single_repository(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Timeline pages then commits are persisted and the job completes."""
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()},
            commits={"octo/one": commits_for("a" * 40, "b" * 40)},
            quota=HEALTHY,
        )

        outcome = await _runner(session_factory, client, clock).start(
            user_id="u1", repos=["octo/one"], since=SINCE
        )

        assert outcome.status is JobStatus.COMPLETED
        assert outcome.events_ingested == 4
        assert [(c.method, c.cursor) for c in client.calls] == [
            ("get_repository", None),
            ("search_timeline", None),
            ("search_timeline", "2"),
            ("list_commits", None),
        ]
        job = await IngestionJobCoordinator(session_factory).get(outcome.job_id or "")
        assert job is not None
        assert job.progress == 100
        assert job.repos_remaining == []
        assert job.label == "octo/one"
        assert await _fact_count(session_factory) == 4

    @pytest.mark.asyncio
    async def test_rerun_counts_only_new_facts(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """A second backfill over the same window ingests nothing new."""
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()},
            commits={"octo/one": commits_for("a" * 40)},
            quota=HEALTHY,
        )
        runner = _runner(session_factory, client, clock)

        first = await runner.start(user_id="u1", repos=["octo/one"], since=SINCE)
        second = await runner.start(user_id="u1", repos=["octo/one"], since=SINCE)

        assert first.events_ingested == 3
        assert second.status is JobStatus.COMPLETED
        assert second.events_ingested == 0
        assert await _fact_count(session_factory) == 3

    @pytest.mark.asyncio
    async def test_commits_are_paged_to_the_end(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Every commit page is fetched, not only the first."""
        shas = [f"{n:040x}" for n in range(150)]
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()},
            commits={"octo/one": commits_for(*shas)},
            quota=HEALTHY,
        )

        outcome = await _runner(session_factory, client, clock).start(
            user_id="u1", repos=["octo/one"], since=SINCE
        )

        assert outcome.status is JobStatus.COMPLETED
        assert outcome.events_ingested == 152
        assert [
            c.cursor for c in client.calls if c.method == "list_commits"
        ] == [None, "2"]
        assert await _fact_count(session_factory) == 152

    @pytest.mark.asyncio
    async def test_processes_repositories_in_order(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Each repository is finished before the next starts."""
        client = FakeGitHubClient(
            timeline={
                "octo/one": two_page_timeline(1),
                "octo/two": two_page_timeline(10),
            },
            quota=HEALTHY,
        )

        outcome = await _runner(session_factory, client, clock).start(
            user_id="u1", repos=["octo/one", "octo/two", "octo/one "], since=SINCE
        )

        assert outcome.status is JobStatus.COMPLETED
        repos_in_order = [
            call.full_name for call in client.calls if call.method == "get_repository"
        ]
        assert repos_in_order == ["octo/one", "octo/two"]
        job = await IngestionJobCoordinator(session_factory).get(outcome.job_id or "")
        assert job is not None
        assert job.repos_total == 2
        assert job.label == "2 repositories"

    @pytest.mark.asyncio
    async def test_request_validation(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Empty, oversized and inverted requests are rejected."""
        runner = _runner(
            session_factory,
            FakeGitHubClient(),
            clock,
            config=BackfillConfig(max_repos=2),
        )

        with pytest.raises(BackfillRequestError, match="at least one"):
            await runner.start(user_id="u1", repos=[" ", ""])
        with pytest.raises(BackfillRequestError, match="at most 2"):
            await runner.start(user_id="u1", repos=["a/a", "b/b", "c/c"])
        with pytest.raises(BackfillRequestError, match="window is empty"):
            await runner.start(user_id="u1", repos=["a/a"], since=T0, until=SINCE)

    @pytest.mark.asyncio
    async def test_default_window_uses_lookback(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Without ``since`` the window starts lookback days before now."""
        runner = _runner(
            session_factory,
            FakeGitHubClient(quota=HEALTHY),
            clock,
            config=BackfillConfig(lookback_days=7),
        )

        outcome = await runner.start(user_id="u1", repos=["octo/one"])

        job = await IngestionJobCoordinator(session_factory).get(outcome.job_id or "")
        assert job is not None
        assert job.since == T0 - dt.timedelta(days=7)
        assert job.until == T0


class TestPauseAndResume:
    """Tests for rate-limit pauses and continuation."""

    @pytest.mark.asyncio
    async def test_low_budget_blocks_until_reset(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
        scheduler: RecordingScheduler,
    ) -> None:
        """An exhausted quota blocks the job and schedules a continuation."""
        reset = T0 + dt.timedelta(minutes=30)
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()},
            quota=RateLimitInfo(remaining=50, reset_at=reset),
        )

        outcome = await _runner(session_factory, client, clock, scheduler).start(
            user_id="u1", repos=["octo/one", "octo/two"], since=SINCE
        )

        assert outcome.status is JobStatus.BLOCKED
        assert outcome.blocked_until == reset
        assert scheduler.requests == [(outcome.job_id, reset)]
        job = await IngestionJobCoordinator(session_factory).get(outcome.job_id or "")
        assert job is not None
        assert job.repos_remaining == ["octo/one", "octo/two"]
        assert job.cursor is None
        assert job.rate_limit_remaining == 50

    @pytest.mark.asyncio
    async def test_continue_after_reset_completes(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
        scheduler: RecordingScheduler,
    ) -> None:
        """A due blocked job resumes where it stopped."""
        reset = T0 + dt.timedelta(minutes=30)
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()},
            commits={"octo/one": commits_for("c" * 40)},
            quota=RateLimitInfo(remaining=50, reset_at=reset),
        )
        runner = _runner(session_factory, client, clock, scheduler)
        blocked = await runner.start(user_id="u1", repos=["octo/one"], since=SINCE)
        assert blocked.job_id is not None

        early = await runner.continue_job(blocked.job_id)
        assert early.status is JobStatus.BLOCKED

        clock.now = reset + dt.timedelta(seconds=1)
        client.quota = HEALTHY
        resumed = await runner.continue_job(blocked.job_id)

        assert resumed.status is JobStatus.COMPLETED
        assert resumed.events_ingested == 3

    @pytest.mark.asyncio
    async def test_racing_continuations_run_job_once(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Two continuations of one due job process its work only once."""
        reset = T0 + dt.timedelta(minutes=30)
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()},
            commits={"octo/one": commits_for("c" * 40)},
            quota=RateLimitInfo(remaining=50, reset_at=reset),
        )
        runner = _runner(session_factory, client, clock)
        blocked = await runner.start(user_id="u1", repos=["octo/one"], since=SINCE)
        job_id = blocked.job_id or ""
        clock.now = reset + dt.timedelta(seconds=1)
        client.quota = HEALTHY
        client.calls.clear()

        outcomes = await asyncio.gather(
            runner.continue_job(job_id), runner.continue_job(job_id)
        )

        assert [o.status for o in outcomes].count(JobStatus.COMPLETED) >= 1
        assert [c.method for c in client.calls].count("get_repository") == 1
        job = await IngestionJobCoordinator(session_factory).get(job_id)
        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert job.events_ingested == 3
        assert await _fact_count(session_factory) == 3

    @pytest.mark.asyncio
    async def test_transient_error_keeps_cursor(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
        scheduler: RecordingScheduler,
    ) -> None:
        """A server error mid-repository blocks with the page cursor retained."""
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()}, quota=HEALTHY
        )
        client.failures["search_timeline", "octo/one", "2"] = (
            GitHubAPIError.http_error(502, path="/search/issues")
        )
        runner = _runner(session_factory, client, clock, scheduler)

        outcome = await runner.start(user_id="u1", repos=["octo/one"], since=SINCE)

        assert outcome.status is JobStatus.BLOCKED
        assert outcome.blocked_until == T0 + DEFAULT_BLOCKED_DELAY
        assert outcome.events_ingested == 1
        job = await IngestionJobCoordinator(session_factory).get(outcome.job_id or "")
        assert job is not None
        assert job.cursor == "2"

        client.calls.clear()
        clock.now = T0 + DEFAULT_BLOCKED_DELAY
        resumed = await runner.continue_job(outcome.job_id or "")

        assert resumed.status is JobStatus.COMPLETED
        assert [(c.method, c.cursor) for c in client.calls] == [
            ("get_repository", None),
            ("search_timeline", "2"),
            ("list_commits", None),
        ]

    @pytest.mark.asyncio
    async def test_commit_stage_survives_pause(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """A pause after the timeline resumes straight at the commits stage."""
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()}, quota=HEALTHY
        )
        client.failures["list_commits", "octo/one", None] = GitHubAPIError.timeout(
            "/repos/octo/one/commits"
        )

        outcome = await _runner(session_factory, client, clock).start(
            user_id="u1", repos=["octo/one"], since=SINCE
        )

        job = await IngestionJobCoordinator(session_factory).get(outcome.job_id or "")
        assert job is not None
        assert job.status == JobStatus.BLOCKED
        assert job.cursor == COMMITS_CURSOR

    @pytest.mark.asyncio
    async def test_commit_page_cursor_survives_pause(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """A failure on a later commit page resumes at that page."""
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()},
            commits={"octo/one": commits_for(*(f"{n:040x}" for n in range(150)))},
            quota=HEALTHY,
        )
        client.failures["list_commits", "octo/one", "2"] = GitHubAPIError.timeout(
            "/repos/octo/one/commits"
        )
        runner = _runner(session_factory, client, clock)

        blocked = await runner.start(user_id="u1", repos=["octo/one"], since=SINCE)

        assert blocked.status is JobStatus.BLOCKED
        assert blocked.events_ingested == 102
        job = await IngestionJobCoordinator(session_factory).get(blocked.job_id or "")
        assert job is not None
        assert job.cursor == f"{COMMITS_CURSOR}:2"

        client.calls.clear()
        clock.now = T0 + DEFAULT_BLOCKED_DELAY
        resumed = await runner.continue_job(blocked.job_id or "")

        assert resumed.status is JobStatus.COMPLETED
        assert resumed.events_ingested == 152
        assert [(c.method, c.cursor) for c in client.calls] == [
            ("get_repository", None),
            ("list_commits", "2"),
        ]

    @pytest.mark.asyncio
    async def test_permanent_error_fails_job(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
        scheduler: RecordingScheduler,
    ) -> None:
        """Client errors fail the job without scheduling a retry."""
        client = FakeGitHubClient(quota=HEALTHY)
        client.failures["get_repository", "octo/gone", None] = (
            GitHubAPIError.http_error(404, path="/repos/octo/gone")
        )

        outcome = await _runner(session_factory, client, clock, scheduler).start(
            user_id="u1", repos=["octo/gone"], since=SINCE
        )

        assert outcome.status is JobStatus.FAILED
        assert outcome.error == "GitHub HTTP 404 for /repos/octo/gone"
        assert scheduler.requests == []

    @pytest.mark.asyncio
    async def test_continue_job_edge_cases(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Missing and finished jobs are left alone; pending jobs start."""
        client = FakeGitHubClient(quota=HEALTHY)
        runner = _runner(session_factory, client, clock)
        coordinator = IngestionJobCoordinator(session_factory, clock=clock)

        missing = await runner.continue_job("missing")
        assert missing.status is None

        pending = await coordinator.create(
            user_id="u1", label="octo/one", repos=["octo/one"], since=SINCE, until=T0
        )
        started = await runner.continue_job(pending.id)
        assert started.status is JobStatus.COMPLETED

        calls_before = len(client.calls)
        again = await runner.continue_job(pending.id)
        assert again.status is JobStatus.COMPLETED
        assert len(client.calls) == calls_before


class TestInstallationState:
    """Tests for per-installation quota and sync state."""

    @pytest.mark.asyncio
    async def test_records_budget_and_sync_state(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """Quota and sync status are written to the installation row."""
        tracker = RateLimitTracker(session_factory)
        await tracker.register_installation(42, "octo")
        client = FakeGitHubClient(
            timeline={"octo/one": two_page_timeline()}, quota=HEALTHY
        )

        await _runner(session_factory, client, clock).start(
            user_id="u1", repos=["octo/one"], installation_id=42, since=SINCE
        )

        budget = await tracker.get_budget(42)
        assert budget is not None
        assert budget.remaining == 4000
        installation = await tracker.register_installation(42, "octo")
        assert installation.sync_status == "idle"
        assert installation.last_synced_at == T0

    @pytest.mark.asyncio
    async def test_stored_budget_blocks_before_first_call(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        """A low stored budget pauses the job before any GitHub request."""
        tracker = RateLimitTracker(session_factory)
        await tracker.register_installation(42, "octo")
        await tracker.update_budget(42, 3, T0 + dt.timedelta(minutes=12))
        client = FakeGitHubClient(quota=HEALTHY)

        outcome = await _runner(session_factory, client, clock).start(
            user_id="u1", repos=["octo/one"], installation_id=42, since=SINCE
        )

        assert outcome.status is JobStatus.BLOCKED
        assert outcome.blocked_until == T0 + dt.timedelta(minutes=12)
        assert client.calls == []
