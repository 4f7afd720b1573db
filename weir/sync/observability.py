"""Structured log events for ingestion jobs and webhook processing.

Every event is a single line ``[event.type] key=value ...`` so log
aggregators can parse runs, pauses and failures without a metrics backend.
Secrets, signatures and payload bodies are never logged.
"""

from __future__ import annotations

import enum
import typing as typ

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from weir.embeddings.errors import EmbedderConfigError
from weir.github.errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
)
from weir.logging import get_logger, log_error, log_info, log_warning
from weir.silver.errors import CanonicalFactPersistError, CanonicalFactPersistReason

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)


class IngestionEventType(enum.StrEnum):
    """Structured log event types for ingestion observability."""

    JOB_STARTED = "ingestion.job.started"
    JOB_RESUMED = "ingestion.job.resumed"
    JOB_BLOCKED = "ingestion.job.blocked"
    JOB_COMPLETED = "ingestion.job.completed"
    JOB_FAILED = "ingestion.job.failed"
    PAGE_PERSISTED = "ingestion.page.persisted"
    WEBHOOK_PROCESSED = "ingestion.webhook.processed"
    WEBHOOK_FAILED = "ingestion.webhook.failed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    CLIENT_ERROR = "client_error"
    SCHEMA_DRIFT = "schema_drift"
    CONFIGURATION = "configuration"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (GitHubResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (EmbedderConfigError, ErrorCategory.CONFIGURATION),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting and retry decisions."""
    if isinstance(exc, GitHubAPIError):
        if exc.rate_limited:
            return ErrorCategory.RATE_LIMITED
        if exc.transient:
            return ErrorCategory.TRANSIENT
        return ErrorCategory.CLIENT_ERROR

    if isinstance(exc, CanonicalFactPersistError):
        if exc.reason == CanonicalFactPersistReason.INVALID_EVENT:
            return ErrorCategory.SCHEMA_DRIFT
        return ErrorCategory.DATA_INTEGRITY

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    return ErrorCategory.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` when waiting and retrying may succeed."""
    return categorize_error(exc) in {
        ErrorCategory.RATE_LIMITED,
        ErrorCategory.TRANSIENT,
        ErrorCategory.DATABASE_CONNECTIVITY,
    }


class IngestionEventLogger:
    """Emit structured ingestion events through femtologging.

    Events are INFO for progress, WARNING for pauses and ERROR for failures.
    """

    def log_job_started(self, job_id: str, label: str, repos_total: int) -> None:
        """Log a job beginning its first run."""
        log_info(
            logger,
            "[%s] job_id=%s label=%s repos_total=%d",
            IngestionEventType.JOB_STARTED,
            job_id,
            label,
            repos_total,
        )

    def log_job_resumed(self, job_id: str, repos_remaining: int) -> None:
        """Log a blocked job continuing after its wake time."""
        log_info(
            logger,
            "[%s] job_id=%s repos_remaining=%d",
            IngestionEventType.JOB_RESUMED,
            job_id,
            repos_remaining,
        )

    def log_page_persisted(  # noqa: PLR0913
        self,
        job_id: str,
        repo: str,
        items: int,
        inserted: int,
        duplicates: int,
        next_cursor: str | None,
    ) -> None:
        """Log one timeline page written to the fact store."""
        log_info(
            logger,
            "[%s] job_id=%s repo=%s items=%d inserted=%d duplicates=%d has_next=%s",
            IngestionEventType.PAGE_PERSISTED,
            job_id,
            repo,
            items,
            inserted,
            duplicates,
            next_cursor is not None,
        )

    def log_job_blocked(
        self,
        job_id: str,
        blocked_until: dt.datetime,
        repos_remaining: int,
        reason: str,
    ) -> None:
        """Log a job pausing until ``blocked_until``."""
        log_warning(
            logger,
            "[%s] job_id=%s blocked_until=%s repos_remaining=%d reason=%s",
            IngestionEventType.JOB_BLOCKED,
            job_id,
            blocked_until.isoformat(),
            repos_remaining,
            reason,
        )

    def log_job_completed(
        self, job_id: str, events_ingested: int, duration: dt.timedelta
    ) -> None:
        """Log successful job completion."""
        log_info(
            logger,
            "[%s] job_id=%s events_ingested=%d duration_seconds=%.3f",
            IngestionEventType.JOB_COMPLETED,
            job_id,
            events_ingested,
            duration.total_seconds(),
        )

    def log_job_failed(self, job_id: str, error: BaseException) -> None:
        """Log a terminal job failure with its error category."""
        log_error(
            logger,
            "[%s] job_id=%s error_type=%s error_category=%s error_message=%s",
            IngestionEventType.JOB_FAILED,
            job_id,
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_webhook_processed(  # noqa: PLR0913
        self,
        envelope_id: int,
        event: str,
        inserted: int,
        duplicates: int,
        skipped: int,
    ) -> None:
        """Log a webhook envelope processed into facts."""
        log_info(
            logger,
            "[%s] envelope_id=%d event=%s inserted=%d duplicates=%d skipped=%d",
            IngestionEventType.WEBHOOK_PROCESSED,
            envelope_id,
            event,
            inserted,
            duplicates,
            skipped,
        )

    def log_webhook_failed(
        self, envelope_id: int, event: str, error: BaseException
    ) -> None:
        """Log a webhook envelope that failed processing."""
        log_error(
            logger,
            "[%s] envelope_id=%d event=%s error_type=%s error_category=%s",
            IngestionEventType.WEBHOOK_FAILED,
            envelope_id,
            event,
            type(error).__name__,
            categorize_error(error),
            exc_info=error,
        )
