"""Idempotent persistence of canonical facts and their dimensions."""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from weir.embeddings.queue import EmbeddingQueue
from weir.logging import get_logger, log_debug
from weir.silver.errors import CanonicalFactPersistError
from weir.silver.storage import Actor, EventFact, Repository

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from weir.silver.canonicalize import CanonicalActor, CanonicalEvent, CanonicalRepo

logger = get_logger(__name__)


class PersistStatus(enum.StrEnum):
    """Outcome of persisting one canonical event."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


@dc.dataclass(frozen=True, slots=True)
class PersistResult:
    """Result of :meth:`CanonicalFactService.persist_canonical_event`."""

    status: PersistStatus
    event_id: int | None = None


@dc.dataclass(frozen=True, slots=True)
class CanonicalFact:
    """Row-ready canonical fact with resolved dimension ids."""

    type: str
    actor_id: int
    repository_id: int
    occurred_at: dt.datetime
    canonical_text: str
    source_url: str
    content_hash: str
    metadata: dict[str, typ.Any] = dc.field(default_factory=dict)
    metrics: dict[str, int] | None = None
    gh_id: str | None = None
    gh_node_id: str | None = None


class CanonicalFactService:
    """Write canonical facts once per content hash.

    Every write looks up the natural key first and inserts only when nothing
    is found. Concurrent writers that lose the race hit the unique
    constraint; the loser rolls back and returns the winner's row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        embedding_queue: EmbeddingQueue | None = None,
    ) -> None:
        """Store the session factory and the queue fed by new facts."""
        self._session_factory = session_factory
        self._embedding_queue = embedding_queue or EmbeddingQueue(session_factory)

    async def upsert_canonical(self, fact: CanonicalFact) -> int:
        """Return the id of the fact stored under ``fact.content_hash``."""
        event_id, _ = await self._upsert(fact)
        return event_id

    async def persist_canonical_event(
        self,
        event: CanonicalEvent,
        *,
        installation_id: int | None = None,
    ) -> PersistResult:
        """Resolve dimensions, upsert the fact and queue new facts for embedding.

        Events without an actor login or repository name are skipped.
        """
        if not event.actor.login or not event.repo.full_name:
            return PersistResult(PersistStatus.SKIPPED)

        actor_id = await self.ensure_actor(event.actor)
        repository_id = await self.ensure_repository(
            event.repo, installation_id=installation_id
        )
        content_hash = event.content_hash
        event_id, inserted = await self._upsert(
            CanonicalFact(
                type=event.type.value,
                actor_id=actor_id,
                repository_id=repository_id,
                occurred_at=event.occurred_at,
                canonical_text=event.canonical_text,
                source_url=event.source_url,
                content_hash=content_hash,
                metadata=event.metadata,
                metrics=event.metrics,
                gh_id=event.gh_id,
                gh_node_id=event.gh_node_id,
            )
        )
        if not inserted:
            return PersistResult(PersistStatus.DUPLICATE, event_id)

        await self._embedding_queue.enqueue(event_id, content_hash)
        return PersistResult(PersistStatus.INSERTED, event_id)

    async def ensure_actor(self, actor: CanonicalActor) -> int:
        """Return the actor row id, inserting or refreshing it as needed.

        Actors with a GitHub id are keyed by it; authors without an account
        are keyed by login.
        """
        async with self._session_factory() as session:
            existing = await self._load_actor(session, actor)
            if existing is not None:
                changed = _apply_changes(
                    existing,
                    login=actor.login,
                    name=actor.name,
                    avatar_url=actor.avatar_url,
                )
                if changed:
                    await session.commit()
                return existing.id

            row = Actor(
                gh_id=actor.gh_id,
                login=actor.login,
                name=actor.name,
                avatar_url=actor.avatar_url,
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                winner = await self._load_actor(session, actor)
                if winner is None:
                    raise CanonicalFactPersistError.concurrent_insert(
                        "actors", actor.gh_id or actor.login
                    ) from exc
                return winner.id
            return row.id

    async def ensure_repository(
        self,
        repo: CanonicalRepo,
        *,
        installation_id: int | None = None,
    ) -> int:
        """Return the repository row id, inserting or refreshing it as needed."""
        async with self._session_factory() as session:
            existing = await self._load_repository(session, repo)
            if existing is not None:
                changed = _apply_changes(
                    existing,
                    gh_id=repo.gh_id,
                    full_name=repo.full_name,
                    default_branch=repo.default_branch,
                    visibility=repo.visibility,
                    installation_id=installation_id,
                )
                if changed:
                    await session.commit()
                return existing.id

            owner, _, name = repo.full_name.partition("/")
            row = Repository(
                gh_id=repo.gh_id,
                full_name=repo.full_name,
                owner=repo.owner or owner,
                name=repo.name or name,
                default_branch=repo.default_branch,
                visibility=repo.visibility,
                installation_id=installation_id,
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                winner = await self._load_repository(session, repo)
                if winner is None:
                    raise CanonicalFactPersistError.concurrent_insert(
                        "repositories", repo.gh_id or repo.full_name
                    ) from exc
                return winner.id
            return row.id

    async def get_by_hash(self, content_hash: str) -> EventFact | None:
        """Return the fact stored under ``content_hash``, if any."""
        async with self._session_factory() as session:
            return await self._load_fact(session, content_hash)

    async def _upsert(self, fact: CanonicalFact) -> tuple[int, bool]:
        async with self._session_factory() as session:
            existing = await self._load_fact(session, fact.content_hash)
            if existing is not None:
                return existing.id, False

            row = EventFact(
                type=fact.type,
                gh_id=fact.gh_id,
                gh_node_id=fact.gh_node_id,
                actor_id=fact.actor_id,
                repository_id=fact.repository_id,
                occurred_at=fact.occurred_at,
                canonical_text=fact.canonical_text,
                source_url=fact.source_url,
                metrics=fact.metrics,
                content_hash=fact.content_hash,
                metadata_=dict(fact.metadata),
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                winner = await self._load_fact(session, fact.content_hash)
                if winner is None:
                    raise CanonicalFactPersistError.concurrent_insert(
                        "event_facts", fact.content_hash
                    ) from exc
                log_debug(
                    logger,
                    "Concurrent insert for %s resolved to fact %d",
                    fact.type,
                    winner.id,
                )
                return winner.id, False
            return row.id, True

    @staticmethod
    async def _load_fact(session: AsyncSession, content_hash: str) -> EventFact | None:
        return await session.scalar(
            select(EventFact).where(EventFact.content_hash == content_hash)
        )

    @staticmethod
    async def _load_actor(session: AsyncSession, actor: CanonicalActor) -> Actor | None:
        if actor.gh_id is not None:
            return await session.scalar(select(Actor).where(Actor.gh_id == actor.gh_id))
        return await session.scalar(
            select(Actor)
            .where(Actor.gh_id.is_(None), Actor.login == actor.login)
            .order_by(Actor.id)
            .limit(1)
        )

    @staticmethod
    async def _load_repository(
        session: AsyncSession, repo: CanonicalRepo
    ) -> Repository | None:
        if repo.gh_id is not None:
            found = await session.scalar(
                select(Repository).where(Repository.gh_id == repo.gh_id)
            )
            if found is not None:
                return found
        return await session.scalar(
            select(Repository).where(Repository.full_name == repo.full_name)
        )


def _apply_changes(row: object, **values: object) -> bool:
    """Copy non-``None`` values onto ``row``; return whether anything changed."""
    changed = False
    for attr, value in values.items():
        if value is not None and getattr(row, attr) != value:
            setattr(row, attr, value)
            changed = True
    return changed
