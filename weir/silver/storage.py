"""Canonical event facts and the actor/repository dimensions they reference."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

from sqlalchemy import (
    JSON,
    BigInteger,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from weir.bronze.storage import Base, UTCDateTime
from weir.common.time import utcnow


class Actor(Base):
    """GitHub user keyed by numeric id, or by login when GitHub gives none."""

    __tablename__ = "actors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    gh_id: Mapped[int | None] = mapped_column(
        BigInteger, unique=True, default=None
    )
    login: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str | None] = mapped_column(String(255), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(512), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class Repository(Base):
    """GitHub repository keyed by its numeric id."""

    __tablename__ = "repositories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    gh_id: Mapped[int | None] = mapped_column(
        BigInteger, unique=True, default=None
    )
    full_name: Mapped[str] = mapped_column(String(255), unique=True)
    owner: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    default_branch: Mapped[str | None] = mapped_column(String(255), default=None)
    visibility: Mapped[str | None] = mapped_column(String(32), default=None)
    installation_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class EventFact(Base):
    """Immutable canonical record of one GitHub activity item.

    ``content_hash`` is the idempotency key: every writer looks it up before
    inserting and the unique constraint rejects concurrent duplicates.
    """

    __tablename__ = "event_facts"
    __table_args__ = (
        Index("ix_event_facts_repo_time", "repository_id", "occurred_at"),
        Index("ix_event_facts_actor_time", "actor_id", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(32))
    gh_id: Mapped[str | None] = mapped_column(String(64), default=None)
    gh_node_id: Mapped[str | None] = mapped_column(String(128), default=None)
    actor_id: Mapped[int] = mapped_column(ForeignKey("actors.id"))
    repository_id: Mapped[int] = mapped_column(ForeignKey("repositories.id"))
    occurred_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    canonical_text: Mapped[str] = mapped_column(Text())
    source_url: Mapped[str] = mapped_column(String(1024))
    metrics: Mapped[dict[str, int] | None] = mapped_column(JSON, default=None)
    content_hash: Mapped[str] = mapped_column(String(64), unique=True)
    metadata_: Mapped[dict[str, typ.Any]] = mapped_column(
        "metadata", JSON, default=dict
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
