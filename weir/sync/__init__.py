"""Ingestion orchestration: webhook processing and historical backfill."""

from __future__ import annotations

from .backfill import (
    COMMITS_CURSOR,
    RUNNING_PROGRESS_CAP,
    BackfillOutcome,
    BackfillRunner,
    ContinuationScheduler,
)
from .config import MAX_REPOS_PER_INVOCATION, BackfillConfig
from .errors import BackfillRequestError
from .observability import (
    ErrorCategory,
    IngestionEventLogger,
    IngestionEventType,
    categorize_error,
    is_retryable,
)
from .webhooks import WebhookProcessor, WebhookProcessResult

__all__ = [
    "COMMITS_CURSOR",
    "MAX_REPOS_PER_INVOCATION",
    "RUNNING_PROGRESS_CAP",
    "BackfillConfig",
    "BackfillOutcome",
    "BackfillRequestError",
    "BackfillRunner",
    "ContinuationScheduler",
    "ErrorCategory",
    "IngestionEventLogger",
    "IngestionEventType",
    "WebhookProcessResult",
    "WebhookProcessor",
    "categorize_error",
    "is_retryable",
]
