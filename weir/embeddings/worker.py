"""Drain the embedding queue in bounded batches."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from weir.embeddings.errors import EmbeddingError
from weir.embeddings.queue import EmbeddingQueue
from weir.embeddings.storage import Embedding
from weir.logging import get_logger, log_info, log_warning
from weir.silver.storage import EventFact

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from weir.embeddings.protocol import Embedder
    from weir.embeddings.storage import EmbeddingQueueItem

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 25
MAX_BATCH_SIZE = 50


def clamp_batch_size(limit: int) -> int:
    """Clamp ``limit`` to ``1..MAX_BATCH_SIZE``."""
    return max(1, min(limit, MAX_BATCH_SIZE))


@dc.dataclass(frozen=True, slots=True)
class BatchResult:
    """Outcome of one :meth:`EmbeddingBatchRunner.ensure_batch` call."""

    claimed: int = 0
    embedded: int = 0
    failed: int = 0
    error: str | None = None


class EmbeddingBatchRunner:
    """Claim pending queue items, embed their facts and store the vectors.

    Embedder failures fail every claimed item with the provider's message
    and are reported in the :class:`BatchResult` rather than raised, so the
    queue's retry ceiling governs redelivery. An item whose vector cannot be
    stored is failed on its own; the rest of the batch still completes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: Embedder,
        *,
        queue: EmbeddingQueue | None = None,
    ) -> None:
        """Store collaborators; the queue defaults to one over ``session_factory``."""
        self._session_factory = session_factory
        self._embedder = embedder
        self._queue = queue or EmbeddingQueue(session_factory)

    async def ensure_batch(self, limit: int = DEFAULT_BATCH_SIZE) -> BatchResult:
        """Process up to ``limit`` pending items (clamped to 1-50)."""
        pending = await self._queue.list_pending(clamp_batch_size(limit))
        claimed = [item for item in pending if await self._queue.mark_processing(item.id)]
        if not claimed:
            return BatchResult()

        texts = await self._load_texts(claimed)
        ready = [item for item in claimed if item.event_id in texts]
        for item in claimed:
            if item.event_id not in texts:
                await self._queue.fail(item.id, "event fact no longer exists")
        if not ready:
            return BatchResult(claimed=len(claimed), failed=len(claimed))

        try:
            vectors = await self._embedder.embed([texts[item.event_id] for item in ready])
        except EmbeddingError as exc:
            message = str(exc)
            for item in ready:
                await self._queue.fail(item.id, message)
            log_warning(
                logger,
                "Embedding batch of %d items failed: %s",
                len(ready),
                message,
            )
            return BatchResult(
                claimed=len(claimed), failed=len(claimed), error=message
            )

        embedded = 0
        for item, vector in zip(ready, vectors, strict=True):
            try:
                await self._store(item, vector)
                await self._queue.complete(item.id)
            except Exception as exc:  # noqa: BLE001 - recorded on the queue item
                await self._queue.fail(item.id, str(exc))
                log_warning(
                    logger, "Storing embedding for queue item %d failed: %s", item.id, exc
                )
            else:
                embedded += 1

        log_info(logger, "Embedded %d of %d claimed facts", embedded, len(claimed))
        return BatchResult(
            claimed=len(claimed),
            embedded=embedded,
            failed=len(claimed) - embedded,
        )

    async def _load_texts(self, items: list[EmbeddingQueueItem]) -> dict[int, str]:
        async with self._session_factory() as session:
            rows = await session.execute(
                select(EventFact.id, EventFact.canonical_text).where(
                    EventFact.id.in_([item.event_id for item in items])
                )
            )
            return {event_id: text for event_id, text in rows}

    async def _store(self, item: EmbeddingQueueItem, vector: list[float]) -> None:
        async with self._session_factory() as session:
            session.add(
                Embedding(
                    event_id=item.event_id,
                    content_hash=item.content_hash,
                    model=self._embedder.model,
                    vector=vector,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await session.scalar(
                    select(Embedding.id).where(
                        Embedding.content_hash == item.content_hash
                    )
                )
                if existing is None:
                    raise
