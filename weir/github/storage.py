"""Persistence model for GitHub App installations and their quota."""

from __future__ import annotations

import datetime as dt

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from weir.bronze.storage import Base, UTCDateTime
from weir.common.time import utcnow


class Installation(Base):
    """A GitHub App installation with its last known rate-limit budget."""

    __tablename__ = "installations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    installation_id: Mapped[int] = mapped_column(BigInteger, unique=True)
    account_login: Mapped[str] = mapped_column(String(255))
    rate_limit_remaining: Mapped[int | None] = mapped_column(Integer, default=None)
    rate_limit_reset: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    last_cursor: Mapped[str | None] = mapped_column(String(255), default=None)
    etag: Mapped[str | None] = mapped_column(String(255), default=None)
    last_synced_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    sync_status: Mapped[str | None] = mapped_column(String(32), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )
