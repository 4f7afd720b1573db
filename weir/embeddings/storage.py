"""Embedding work queue and completed embedding tables."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import enum

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from weir.bronze.storage import Base, UTCDateTime
from weir.common.time import utcnow

MAX_ATTEMPTS = 5


class QueueStatus(enum.StrEnum):
    """Lifecycle of an embedding queue item.

    Completed items are deleted rather than kept with a terminal status.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"


class EmbeddingQueueItem(Base):
    """Pending request to embed one canonical fact."""

    __tablename__ = "embedding_queue"
    __table_args__ = (Index("ix_embedding_queue_status_created", "status", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("event_facts.id"))
    content_hash: Mapped[str] = mapped_column(String(64), unique=True)
    status: Mapped[str] = mapped_column(
        String(16), default=QueueStatus.PENDING.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    error_message: Mapped[str | None] = mapped_column(Text(), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class Embedding(Base):
    """Stored vector for one canonical fact."""

    __tablename__ = "embeddings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("event_facts.id"))
    content_hash: Mapped[str] = mapped_column(String(64), unique=True)
    model: Mapped[str] = mapped_column(String(128))
    vector: Mapped[list[float]] = mapped_column(JSON)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
