"""Dramatiq actors driving webhook processing, embeddings and backfills.

Every actor takes the database URL so a worker can serve several stores;
engines and session factories are cached per URL for the life of the
worker process.

Usage
-----
Process a stored webhook envelope:

>>> process_webhook_job.send("postgresql+asyncpg://...", 42)

Start a backfill of two repositories for one user:

>>> start_backfill_job.send(
...     "postgresql+asyncpg://...", "user-1", ["octo/one", "octo/two"]
... )

Run the periodic sweep (zombie detection and blocked-job wake-ups):

>>> sweep_ingestion_jobs_job.send("postgresql+asyncpg://...")

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from weir.cache.config import CacheConfig
from weir.common.time import parse_iso_datetime, utcnow
from weir.embeddings.factory import create_embedder
from weir.embeddings.worker import DEFAULT_BATCH_SIZE, EmbeddingBatchRunner
from weir.github.client import GitHubRestClient, GitHubRestConfig
from weir.jobs.coordinator import ZOMBIE_TIMEOUT, IngestionJobCoordinator
from weir.logging import get_logger, log_info, log_warning
from weir.sync.backfill import BackfillRunner
from weir.sync.config import BackfillConfig
from weir.sync.errors import BackfillRequestError
from weir.sync.webhooks import WebhookProcessor
from weir.tasks._broker import ensure_broker_configured

if typ.TYPE_CHECKING:
    import datetime as dt

    from weir.cache.response_cache import ResponseCache
    from weir.github.client import GitHubActivityClient
    from weir.sync.backfill import BackfillOutcome
    from weir.sync.webhooks import WebhookProcessResult

__all__ = [
    "BackfillRequest",
    "DramatiqContinuationScheduler",
    "DramatiqWebhookDispatcher",
    "continue_backfill_job",
    "ensure_embedding_batch_job",
    "process_pending_webhooks_job",
    "process_webhook_job",
    "start_backfill_job",
    "sweep_ingestion_jobs_job",
]

type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)

_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()
_response_cache: ResponseCache | None = None


def _ensure_engine(database_url: str) -> AsyncEngine:
    """Return the cached engine for *database_url*, creating it if absent.

    Precondition: the caller **must** hold ``_CACHE_LOCK``.
    """
    if database_url not in _ENGINE_CACHE:
        _ENGINE_CACHE[database_url] = create_async_engine(database_url)
    return _ENGINE_CACHE[database_url]


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Get or create an async session factory for the given database URL.

    Thread-safe: uses a lock to prevent race conditions in Dramatiq workers.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            engine = _ensure_engine(database_url)
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


def _get_response_cache() -> ResponseCache:
    """Return the worker process's shared GitHub response cache."""
    global _response_cache
    with _CACHE_LOCK:
        if _response_cache is None:
            _response_cache = CacheConfig.from_env().build()
        return _response_cache


def _run[T](
    database_url: str,
    async_fn: typ.Callable[[SessionFactory], typ.Awaitable[T]],
) -> T:
    """Execute ``async_fn`` with the cached session factory on a fresh loop."""
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)
    return asyncio.run(async_fn(session_factory))


@dc.dataclass(frozen=True, slots=True)
class DramatiqContinuationScheduler:
    """Schedule backfill continuations as delayed Dramatiq messages."""

    database_url: str

    def schedule(self, job_id: str, at: dt.datetime) -> None:
        """Send ``continue_backfill_job`` to run no earlier than ``at``."""
        delay_ms = max(0, int((at - utcnow()).total_seconds() * 1000))
        continue_backfill_job.send_with_options(
            args=(self.database_url, job_id), delay=delay_ms
        )


@dc.dataclass(frozen=True, slots=True)
class DramatiqWebhookDispatcher:
    """Hand stored webhook envelopes to ``process_webhook_job``."""

    database_url: str

    def dispatch(self, envelope_id: int) -> None:
        """Send ``process_webhook_job`` for ``envelope_id``."""
        process_webhook_job.send(self.database_url, envelope_id)


@dc.dataclass(frozen=True, slots=True)
class BackfillRequest:
    """Arguments of ``start_backfill_job`` after decoding from the message."""

    user_id: str
    repos: list[str]
    installation_id: int | None = None
    since: dt.datetime | None = None
    until: dt.datetime | None = None

    @classmethod
    def from_message(
        cls,
        user_id: str,
        repos: list[str],
        installation_id: int | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> BackfillRequest:
        """Build a request from JSON-safe actor arguments (ISO timestamps)."""
        return cls(
            user_id=user_id,
            repos=list(repos),
            installation_id=installation_id,
            since=parse_iso_datetime(since) if since else None,
            until=parse_iso_datetime(until) if until else None,
        )


def _request_embeddings(database_url: str) -> None:
    ensure_embedding_batch_job.send(database_url)


async def _process_webhook(
    session_factory: SessionFactory, envelope_id: int
) -> WebhookProcessResult:
    return await WebhookProcessor(session_factory).process(envelope_id)


async def _process_pending_webhooks(
    session_factory: SessionFactory, limit: int
) -> list[WebhookProcessResult]:
    return await WebhookProcessor(session_factory).process_pending(limit)


async def _ensure_embedding_batch(session_factory: SessionFactory, limit: int) -> int:
    embedder = create_embedder()
    try:
        result = await EmbeddingBatchRunner(session_factory, embedder).ensure_batch(
            limit
        )
    finally:
        aclose = getattr(embedder, "aclose", None)
        if aclose is not None:
            await aclose()
    return result.embedded


async def _with_runner[T](
    session_factory: SessionFactory,
    database_url: str,
    body: typ.Callable[[BackfillRunner], typ.Awaitable[T]],
    client: GitHubActivityClient | None = None,
) -> T:
    """Run ``body`` with a backfill runner, owning the GitHub client if none is given."""
    rest_client: GitHubRestClient | None = None
    if client is None:
        rest_client = GitHubRestClient(
            GitHubRestConfig.from_env(), cache=_get_response_cache()
        )
        client = rest_client
    try:
        runner = BackfillRunner(
            session_factory,
            client,
            config=BackfillConfig.from_env(),
            scheduler=DramatiqContinuationScheduler(database_url),
        )
        return await body(runner)
    finally:
        if rest_client is not None:
            await rest_client.aclose()


async def _start_backfill(
    session_factory: SessionFactory,
    database_url: str,
    request: BackfillRequest,
    client: GitHubActivityClient | None = None,
) -> BackfillOutcome | None:
    async def body(runner: BackfillRunner) -> BackfillOutcome | None:
        try:
            return await runner.start(
                user_id=request.user_id,
                repos=request.repos,
                installation_id=request.installation_id,
                since=request.since,
                until=request.until,
            )
        except BackfillRequestError as exc:
            log_warning(
                logger, "Rejected backfill request from %s: %s", request.user_id, exc
            )
            return None

    return await _with_runner(session_factory, database_url, body, client)


async def _continue_backfill(
    session_factory: SessionFactory,
    database_url: str,
    job_id: str,
    client: GitHubActivityClient | None = None,
) -> BackfillOutcome:
    return await _with_runner(
        session_factory,
        database_url,
        lambda runner: runner.continue_job(job_id),
        client,
    )


async def _sweep(session_factory: SessionFactory) -> tuple[list[str], list[str]]:
    coordinator = IngestionJobCoordinator(session_factory)
    zombies = await coordinator.fail_stale_running(stale_after=ZOMBIE_TIMEOUT)
    due = await coordinator.find_due_blocked()
    return zombies, [job.id for job in due]


ensure_broker_configured()


@dramatiq.actor
def process_webhook_job(database_url: str, envelope_id: int) -> bool:
    """Canonicalize and persist one stored webhook envelope.

    Returns
    -------
    bool
        ``True`` when the envelope was processed without error. Skipped and
        failed envelopes return ``False``; failures are recorded on the
        envelope rather than raised.

    """
    result = _run(
        database_url,
        lambda session_factory: _process_webhook(session_factory, envelope_id),
    )
    if result.inserted:
        _request_embeddings(database_url)
    return result.processed and result.error is None


@dramatiq.actor
def process_pending_webhooks_job(database_url: str, limit: int = 100) -> dict[str, int]:
    """Drain up to ``limit`` pending envelopes, oldest first.

    Schedule this periodically when deliveries are stored without a
    dispatcher. Returns counts of ``processed`` and ``failed`` envelopes.
    """
    results = _run(
        database_url,
        lambda session_factory: _process_pending_webhooks(session_factory, limit),
    )
    if any(result.inserted for result in results):
        _request_embeddings(database_url)
    return {
        "processed": sum(1 for result in results if result.processed),
        "failed": sum(1 for result in results if result.error is not None),
    }


@dramatiq.actor
def ensure_embedding_batch_job(
    database_url: str, limit: int = DEFAULT_BATCH_SIZE
) -> int:
    """Embed up to ``limit`` pending queue items and return how many succeeded."""
    return _run(
        database_url,
        lambda session_factory: _ensure_embedding_batch(session_factory, limit),
    )


@dramatiq.actor
def start_backfill_job(  # noqa: PLR0913
    database_url: str,
    user_id: str,
    repos: list[str],
    installation_id: int | None = None,
    since: str | None = None,
    until: str | None = None,
) -> str | None:
    """Create a backfill job for ``repos`` and run it as far as quota allows.

    ``since`` and ``until`` are ISO-8601 timestamps. Requires
    ``WEIR_GITHUB_TOKEN``. Returns the new job id, or ``None`` when the
    request is rejected (no repositories, too many, or an empty window).
    """
    request = BackfillRequest.from_message(
        user_id, repos, installation_id, since, until
    )
    outcome = _run(
        database_url,
        lambda session_factory: _start_backfill(
            session_factory, database_url, request
        ),
    )
    if outcome is None:
        return None
    if outcome.events_ingested:
        _request_embeddings(database_url)
    return outcome.job_id


@dramatiq.actor
def continue_backfill_job(database_url: str, job_id: str) -> str | None:
    """Resume or start backfill job ``job_id`` and return its resulting status.

    Requires ``WEIR_GITHUB_TOKEN``. A job that pauses again schedules its
    own next continuation.
    """
    outcome = _run(
        database_url,
        lambda session_factory: _continue_backfill(
            session_factory, database_url, job_id
        ),
    )
    if outcome.events_ingested:
        _request_embeddings(database_url)
    return outcome.status.value if outcome.status is not None else None

@dramatiq.actor
def sweep_ingestion_jobs_job(database_url: str) -> dict[str, list[str]]:
    """Fail zombie jobs and send continuations for due blocked jobs.

    Returns
    -------
    dict[str, list[str]]
        ``failed`` holds the zombie job ids, ``resumed`` the blocked job
        ids a continuation was sent for.

    """
    zombies, due = _run(database_url, _sweep)
    for job_id in due:
        continue_backfill_job.send(database_url, job_id)
    log_info(
        logger,
        "Ingestion sweep failed %d zombie job(s) and woke %d blocked job(s)",
        len(zombies),
        len(due),
    )
    return {"failed": zombies, "resumed": due}
