"""Unit tests for the embedding batch runner."""

from __future__ import annotations

import typing as typ

import pytest
from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError

from tests.helpers.github_events import push_payload
from weir.embeddings import (
    MAX_BATCH_SIZE,
    EmbedderAPIError,
    Embedding,
    EmbeddingBatchRunner,
    EmbeddingQueue,
    MockEmbedder,
    QueueStatus,
    clamp_batch_size,
)
from weir.silver import CanonicalFactService, EventFact, canonicalize_webhook

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class _FailingEmbedder:
    """Embedder whose provider is always unavailable."""

    model = "failing"

    def __init__(self) -> None:
        self.calls = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        raise EmbedderAPIError.http_error(503)


class _FlakyCompleteQueue(EmbeddingQueue):
    """Queue whose ``complete`` fails for one fact's item."""

    broken_event_id: int | None = None

    async def complete(self, item_id: int) -> None:
        item = await self.get(item_id)
        if item is not None and item.event_id == self.broken_event_id:
            raise OperationalError(
                "DELETE FROM embedding_queue", {}, Exception("database is locked")
            )
        await super().complete(item_id)


async def _persist_push(
    session_factory: async_sessionmaker[AsyncSession], *shas: str
) -> list[int]:
    """Persist one fact per sha; each is queued for embedding."""
    service = CanonicalFactService(session_factory)
    ids: list[int] = []
    for event in canonicalize_webhook("push", push_payload(*shas)):
        result = await service.persist_canonical_event(event)
        assert result.event_id is not None
        ids.append(result.event_id)
    return ids


@pytest.mark.parametrize(
    ("requested", "expected"),
    [(0, 1), (-3, 1), (25, 25), (MAX_BATCH_SIZE + 1, MAX_BATCH_SIZE)],
)
def test_clamp_batch_size(requested: int, expected: int) -> None:
    """Batch sizes are clamped to 1..MAX_BATCH_SIZE."""
    assert clamp_batch_size(requested) == expected


class TestEnsureBatch:
    """Tests for EmbeddingBatchRunner.ensure_batch."""

    @pytest.mark.asyncio
    async def test_embeds_and_drains_queue(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Pending facts are embedded once and removed from the queue."""
        event_ids = await _persist_push(session_factory, "a" * 40, "b" * 40)
        embedder = MockEmbedder()
        runner = EmbeddingBatchRunner(session_factory, embedder)

        result = await runner.ensure_batch()

        assert (result.claimed, result.embedded, result.failed) == (2, 2, 0)
        assert result.error is None
        assert len(embedder.calls) == 1
        async with session_factory() as session:
            stored = (await session.scalars(select(Embedding))).all()
        assert sorted(row.event_id for row in stored) == sorted(event_ids)
        assert {row.model for row in stored} == {"mock-8"}
        assert await EmbeddingQueue(session_factory).list_pending(10) == []

    @pytest.mark.asyncio
    async def test_empty_queue_is_noop(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Nothing is claimed and the embedder is not called."""
        embedder = MockEmbedder()

        result = await EmbeddingBatchRunner(session_factory, embedder).ensure_batch()

        assert result.claimed == 0
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_respects_limit(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Only ``limit`` items are claimed per batch."""
        await _persist_push(session_factory, "a" * 40, "b" * 40, "c" * 40)
        runner = EmbeddingBatchRunner(session_factory, MockEmbedder())

        first = await runner.ensure_batch(limit=2)
        second = await runner.ensure_batch(limit=2)

        assert first.embedded == 2
        assert second.embedded == 1

    @pytest.mark.asyncio
    async def test_provider_failure_fails_items(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Embedder errors are recorded on every claimed item."""
        await _persist_push(session_factory, "a" * 40)
        queue = EmbeddingQueue(session_factory)
        runner = EmbeddingBatchRunner(session_factory, _FailingEmbedder(), queue=queue)

        result = await runner.ensure_batch()

        assert result.failed == 1
        assert result.error == "Embedding API HTTP error 503"
        (item,) = await queue.list_pending(10)
        assert item.attempts == 1
        assert item.error_message == "Embedding API HTTP error 503"

    @pytest.mark.asyncio
    async def test_repeated_failures_reach_ceiling(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """After the attempt ceiling the item is no longer retried."""
        await _persist_push(session_factory, "a" * 40)
        queue = EmbeddingQueue(session_factory)
        embedder = _FailingEmbedder()
        runner = EmbeddingBatchRunner(session_factory, embedder, queue=queue)

        for _ in range(7):
            await runner.ensure_batch()

        assert embedder.calls == 5
        assert await queue.list_pending(10) == []

    @pytest.mark.asyncio
    async def test_missing_fact_fails_item(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """An item whose fact has been deleted is failed, not embedded."""
        (event_id,) = await _persist_push(session_factory, "a" * 40)
        async with session_factory() as session:
            await session.execute(delete(EventFact).where(EventFact.id == event_id))
            await session.commit()
        queue = EmbeddingQueue(session_factory)
        embedder = MockEmbedder()

        result = await EmbeddingBatchRunner(
            session_factory, embedder, queue=queue
        ).ensure_batch()

        assert (result.claimed, result.embedded, result.failed) == (1, 0, 1)
        assert embedder.calls == []
        (item,) = await queue.list_pending(10)
        assert item.status == QueueStatus.PENDING
        assert item.error_message == "event fact no longer exists"

    @pytest.mark.asyncio
    async def test_store_failure_fails_only_that_item(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A database error while finishing one item returns it to pending."""
        first, _second = await _persist_push(session_factory, "a" * 40, "b" * 40)
        queue = _FlakyCompleteQueue(session_factory)
        queue.broken_event_id = first

        result = await EmbeddingBatchRunner(
            session_factory, MockEmbedder(), queue=queue
        ).ensure_batch()

        assert (result.claimed, result.embedded, result.failed) == (2, 1, 1)
        (item,) = await queue.list_pending(10)
        assert item.event_id == first
        assert item.status == QueueStatus.PENDING
        assert item.error_message is not None
        assert "database is locked" in item.error_message
