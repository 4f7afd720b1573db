"""Silver layer: canonical event facts derived from GitHub activity."""

from __future__ import annotations

from .canonicalize import (
    SUPPORTED_WEBHOOK_EVENTS,
    TEXT_LIMIT,
    CanonicalActor,
    CanonicalEvent,
    CanonicalRepo,
    EventType,
    canonicalize_commits,
    canonicalize_timeline_item,
    canonicalize_webhook,
    normalize_repository,
    repository_from_payload,
)
from .errors import CanonicalFactPersistError, CanonicalFactPersistReason
from .hashing import compute_content_hash
from .services import (
    CanonicalFact,
    CanonicalFactService,
    PersistResult,
    PersistStatus,
)
from .storage import Actor, EventFact, Repository

__all__ = [
    "SUPPORTED_WEBHOOK_EVENTS",
    "TEXT_LIMIT",
    "Actor",
    "CanonicalActor",
    "CanonicalEvent",
    "CanonicalFact",
    "CanonicalFactPersistError",
    "CanonicalFactPersistReason",
    "CanonicalFactService",
    "CanonicalRepo",
    "EventFact",
    "EventType",
    "PersistResult",
    "PersistStatus",
    "Repository",
    "canonicalize_commits",
    "canonicalize_timeline_item",
    "canonicalize_webhook",
    "compute_content_hash",
    "normalize_repository",
    "repository_from_payload",
]
