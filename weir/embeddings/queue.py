"""Durable queue of canonical facts waiting for an embedding.

Workers poll :meth:`EmbeddingQueue.list_pending`, claim items with
:meth:`EmbeddingQueue.mark_processing` and then either
:meth:`~EmbeddingQueue.complete` (delete) or :meth:`~EmbeddingQueue.fail`
them. Claims are a single conditional ``UPDATE`` so concurrent workers never
process the same item twice.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from weir.common.time import utcnow
from weir.embeddings.storage import (
    MAX_ATTEMPTS,
    Embedding,
    EmbeddingQueueItem,
    QueueStatus,
)
from weir.logging import get_logger, log_debug, log_warning

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


class EnqueueStatus(enum.StrEnum):
    """Outcome of :meth:`EmbeddingQueue.enqueue`."""

    ALREADY_EMBEDDED = "already_embedded"
    CREATED = "created"
    REQUEUED = "requeued"
    EXISTING = "existing"


@dc.dataclass(frozen=True, slots=True)
class EnqueueResult:
    """Identifier of the embedding or queue item an enqueue resolved to."""

    item_id: int
    status: EnqueueStatus


class EmbeddingQueue:
    """Table-backed queue with at most one live item per content hash."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for queue access."""
        self._session_factory = session_factory

    async def enqueue(self, event_id: int, content_hash: str) -> EnqueueResult:
        """Queue ``event_id`` for embedding unless it is embedded or queued.

        A failed item for the same hash is reset to ``pending`` with zero
        attempts. When the fact already has an embedding the embedding's id
        is returned with :attr:`EnqueueStatus.ALREADY_EMBEDDED`.
        """
        async with self._session_factory() as session:
            embedded_id = await session.scalar(
                select(Embedding.id).where(Embedding.content_hash == content_hash)
            )
            if embedded_id is not None:
                return EnqueueResult(embedded_id, EnqueueStatus.ALREADY_EMBEDDED)

            existing = await self._load_by_hash(session, content_hash)
            if existing is not None:
                return await self._reuse(session, existing)

            item = EmbeddingQueueItem(event_id=event_id, content_hash=content_hash)
            session.add(item)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                winner = await self._load_by_hash(session, content_hash)
                if winner is None:
                    raise
                log_debug(
                    logger,
                    "Concurrent enqueue for event %d resolved to item %d",
                    event_id,
                    winner.id,
                )
                return await self._reuse(session, winner)
            return EnqueueResult(item.id, EnqueueStatus.CREATED)

    async def list_pending(self, limit: int) -> list[EmbeddingQueueItem]:
        """Return up to ``limit`` pending items, oldest first."""
        async with self._session_factory() as session:
            result = await session.scalars(
                select(EmbeddingQueueItem)
                .where(EmbeddingQueueItem.status == QueueStatus.PENDING.value)
                .order_by(EmbeddingQueueItem.created_at, EmbeddingQueueItem.id)
                .limit(limit)
            )
            return list(result)

    async def get(self, item_id: int) -> EmbeddingQueueItem | None:
        """Return the queue item or ``None`` when it no longer exists."""
        async with self._session_factory() as session:
            return await session.get(EmbeddingQueueItem, item_id)

    async def mark_processing(self, item_id: int) -> bool:
        """Claim a pending item; only one concurrent caller receives ``True``."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(EmbeddingQueueItem)
                .where(
                    EmbeddingQueueItem.id == item_id,
                    EmbeddingQueueItem.status == QueueStatus.PENDING.value,
                )
                .values(
                    status=QueueStatus.PROCESSING.value,
                    attempts=EmbeddingQueueItem.attempts + 1,
                    last_attempt_at=utcnow(),
                )
            )
        return result.rowcount == 1

    async def complete(self, item_id: int) -> None:
        """Delete a finished item; unknown ids are ignored."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(EmbeddingQueueItem).where(EmbeddingQueueItem.id == item_id)
            )

    async def fail(self, item_id: int, message: str | None = None) -> None:
        """Record a failed attempt.

        Items that have used :data:`MAX_ATTEMPTS` attempts become terminally
        ``failed``; others return to ``pending``. Unknown ids are ignored.
        """
        async with self._session_factory() as session, session.begin():
            item = await session.get(EmbeddingQueueItem, item_id)
            if item is None:
                return
            item.error_message = message
            if item.attempts >= MAX_ATTEMPTS:
                item.status = QueueStatus.FAILED.value
                log_warning(
                    logger,
                    "Embedding item %d failed permanently after %d attempts",
                    item_id,
                    item.attempts,
                )
            else:
                item.status = QueueStatus.PENDING.value

    @staticmethod
    async def _reuse(
        session: AsyncSession, item: EmbeddingQueueItem
    ) -> EnqueueResult:
        if item.status != QueueStatus.FAILED.value:
            return EnqueueResult(item.id, EnqueueStatus.EXISTING)
        item.status = QueueStatus.PENDING.value
        item.attempts = 0
        item.error_message = None
        await session.commit()
        return EnqueueResult(item.id, EnqueueStatus.REQUEUED)

    @staticmethod
    async def _load_by_hash(
        session: AsyncSession, content_hash: str
    ) -> EmbeddingQueueItem | None:
        return await session.scalar(
            select(EmbeddingQueueItem).where(
                EmbeddingQueueItem.content_hash == content_hash
            )
        )
