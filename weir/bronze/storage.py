"""Persistence models for the raw webhook envelope store."""

from __future__ import annotations

import datetime as dt
import enum
import typing as typ

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from weir.bronze.errors import TimezoneAwareRequiredError
from weir.common.time import utcnow

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect


class EnvelopeStatus(enum.StrEnum):
    """Processing state of a stored webhook delivery."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Base declarative class shared by every Weir table."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class WebhookEnvelope(Base):
    """Raw GitHub delivery retained until the async processor consumes it."""

    __tablename__ = "webhook_envelopes"
    __table_args__ = (
        Index("ix_webhook_envelopes_status_received", "status", "received_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[str] = mapped_column(String(128), unique=True)
    event: Mapped[str] = mapped_column(String(64))
    installation_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    payload: Mapped[dict[str, typ.Any]] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(
        String(16), default=EnvelopeStatus.PENDING.value
    )
    received_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    processed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    error_message: Mapped[str | None] = mapped_column(Text(), default=None)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
