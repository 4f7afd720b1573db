"""Unit tests for the embedding queue lifecycle."""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

import pytest

from weir.embeddings import (
    MAX_ATTEMPTS,
    Embedding,
    EmbeddingQueue,
    EnqueueStatus,
    QueueStatus,
)
from weir.silver import (
    CanonicalActor,
    CanonicalFact,
    CanonicalFactService,
    CanonicalRepo,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


async def _store_fact(
    session_factory: async_sessionmaker[AsyncSession], content_hash: str
) -> int:
    """Insert a canonical fact without queueing it."""
    service = CanonicalFactService(session_factory)
    actor_id = await service.ensure_actor(CanonicalActor(login="octocat", gh_id=1))
    repo_id = await service.ensure_repository(CanonicalRepo(full_name="octo/weir"))
    return await service.upsert_canonical(
        CanonicalFact(
            type="commit",
            actor_id=actor_id,
            repository_id=repo_id,
            occurred_at=dt.datetime(2024, 7, 1, tzinfo=dt.UTC),
            canonical_text=f"Commit {content_hash[:7]} by octocat",
            source_url=f"https://github.com/octo/weir/commit/{content_hash}",
            content_hash=content_hash,
        )
    )


class TestEnqueue:
    """Tests for EmbeddingQueue.enqueue."""

    @pytest.mark.asyncio
    async def test_created_then_existing(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A second enqueue for a live item returns that item."""
        queue = EmbeddingQueue(session_factory)
        event_id = await _store_fact(session_factory, "a" * 64)

        first = await queue.enqueue(event_id, "a" * 64)
        second = await queue.enqueue(event_id, "a" * 64)

        assert first.status is EnqueueStatus.CREATED
        assert second.status is EnqueueStatus.EXISTING
        assert second.item_id == first.item_id

    @pytest.mark.asyncio
    async def test_already_embedded(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A fact with a stored embedding is not queued again."""
        queue = EmbeddingQueue(session_factory)
        event_id = await _store_fact(session_factory, "b" * 64)
        async with session_factory() as session:
            embedding = Embedding(
                event_id=event_id, content_hash="b" * 64, model="mock-8", vector=[0.1]
            )
            session.add(embedding)
            await session.commit()

        result = await queue.enqueue(event_id, "b" * 64)

        assert result.status is EnqueueStatus.ALREADY_EMBEDDED
        assert result.item_id == embedding.id
        assert await queue.list_pending(10) == []

    @pytest.mark.asyncio
    async def test_failed_item_is_requeued(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Re-enqueueing a failed item resets it to pending with zero attempts."""
        queue = EmbeddingQueue(session_factory)
        event_id = await _store_fact(session_factory, "c" * 64)
        created = await queue.enqueue(event_id, "c" * 64)
        for _ in range(MAX_ATTEMPTS):
            assert await queue.mark_processing(created.item_id)
            await queue.fail(created.item_id, "provider down")

        result = await queue.enqueue(event_id, "c" * 64)

        assert result.status is EnqueueStatus.REQUEUED
        item = await queue.get(created.item_id)
        assert item is not None
        assert item.status == QueueStatus.PENDING
        assert item.attempts == 0
        assert item.error_message is None


class TestClaimAndRetry:
    """Tests for claiming, completing and failing items."""

    @pytest.mark.asyncio
    async def test_retry_ceiling(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Items return to pending until the attempt ceiling, then fail."""
        queue = EmbeddingQueue(session_factory)
        event_id = await _store_fact(session_factory, "d" * 64)
        item_id = (await queue.enqueue(event_id, "d" * 64)).item_id

        for attempt in range(1, MAX_ATTEMPTS + 1):
            assert await queue.mark_processing(item_id) is True
            await queue.fail(item_id, f"attempt {attempt}")
            item = await queue.get(item_id)
            assert item is not None
            assert item.attempts == attempt
            final = attempt == MAX_ATTEMPTS
            assert item.status == (QueueStatus.FAILED if final else QueueStatus.PENDING)

        assert await queue.mark_processing(item_id) is False
        assert item.error_message == f"attempt {MAX_ATTEMPTS}"

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Only one of several simultaneous claims succeeds."""
        queue = EmbeddingQueue(session_factory)
        event_id = await _store_fact(session_factory, "e" * 64)
        item_id = (await queue.enqueue(event_id, "e" * 64)).item_id

        outcomes = await asyncio.gather(
            *(queue.mark_processing(item_id) for _ in range(3))
        )

        assert sorted(outcomes) == [False, False, True]
        item = await queue.get(item_id)
        assert item is not None
        assert item.attempts == 1
        assert item.last_attempt_at is not None

    @pytest.mark.asyncio
    async def test_complete_deletes_item(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Completed items leave the queue."""
        queue = EmbeddingQueue(session_factory)
        event_id = await _store_fact(session_factory, "f" * 64)
        item_id = (await queue.enqueue(event_id, "f" * 64)).item_id
        await queue.mark_processing(item_id)

        await queue.complete(item_id)

        assert await queue.get(item_id) is None

    @pytest.mark.asyncio
    async def test_unknown_ids_are_ignored(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Failing or completing a missing item is a no-op."""
        queue = EmbeddingQueue(session_factory)

        await queue.fail(404, "gone")
        await queue.complete(404)

        assert await queue.mark_processing(404) is False

    @pytest.mark.asyncio
    async def test_list_pending_skips_claimed(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Claimed items are not listed as pending."""
        queue = EmbeddingQueue(session_factory)
        first = await _store_fact(session_factory, "1" * 64)
        second = await _store_fact(session_factory, "2" * 64)
        claimed = (await queue.enqueue(first, "1" * 64)).item_id
        waiting = (await queue.enqueue(second, "2" * 64)).item_id
        await queue.mark_processing(claimed)

        pending = await queue.list_pending(10)

        assert [item.id for item in pending] == [waiting]
