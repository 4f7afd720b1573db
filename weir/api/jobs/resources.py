"""Read-only ingestion job status endpoints.

``GET /ingestion/jobs`` lists a user's jobs (``active=true`` restricts the
listing to pending and running jobs) and ``GET /ingestion/jobs/{job_id}``
returns a single job for progress polling.
"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

from sqlalchemy import select

from weir.api.errors import InvalidInputError
from weir.jobs.errors import JobNotFoundError
from weir.jobs.storage import ACTIVE_STATUSES, IngestionJob

if typ.TYPE_CHECKING:
    import datetime as dt

    from falcon.asgi import Request, Response
    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ["IngestionJobCollectionResource", "IngestionJobResource"]

DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 100


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_job(job: IngestionJob) -> dict[str, typ.Any]:
    """Serialize an ``IngestionJob`` to a JSON-compatible dict."""
    return {
        "id": job.id,
        "user_id": job.user_id,
        "label": job.label,
        "installation_id": job.installation_id,
        "trigger": job.trigger,
        "status": job.status,
        "progress": job.progress,
        "events_ingested": job.events_ingested,
        "embeddings_created": job.embeddings_created,
        "repos_total": job.repos_total,
        "repos_remaining": list(job.repos_remaining or []),
        "rate_limit_remaining": job.rate_limit_remaining,
        "rate_limit_reset": _iso(job.rate_limit_reset),
        "blocked_until": _iso(job.blocked_until),
        "error_message": job.error_message,
        "created_at": _iso(job.created_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "last_updated_at": _iso(job.last_updated_at),
    }


def _parse_limit(raw: str | None) -> int:
    if raw is None:
        return DEFAULT_LIST_LIMIT
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidInputError("must be an integer", field="limit") from exc
    if value < 1:
        raise InvalidInputError("must be positive", field="limit")
    return min(value, MAX_LIST_LIMIT)


class IngestionJobCollectionResource:
    """``GET /ingestion/jobs?user_id=...&active=true&limit=10``."""

    async def on_get(self, req: Request, resp: Response) -> None:
        """List jobs for a user, newest first."""
        user_id = req.get_param("user_id")
        if not user_id:
            raise InvalidInputError("is required", field="user_id")
        active = req.get_param_as_bool("active", default=False)
        limit = _parse_limit(req.get_param("limit"))

        session: AsyncSession = req.context.session
        stmt = select(IngestionJob).where(IngestionJob.user_id == user_id)
        if active:
            stmt = stmt.where(
                IngestionJob.status.in_([status.value for status in ACTIVE_STATUSES])
            )
        stmt = stmt.order_by(IngestionJob.created_at.desc()).limit(limit)
        jobs = (await session.scalars(stmt)).all()

        resp.media = {"jobs": [serialize_job(job) for job in jobs]}
        resp.status = HTTPStatus.OK


class IngestionJobResource:
    """``GET /ingestion/jobs/{job_id}``."""

    async def on_get(self, req: Request, resp: Response, *, job_id: str) -> None:
        """Return one job or 404."""
        session: AsyncSession = req.context.session
        job = await session.get(IngestionJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        resp.media = serialize_job(job)
        resp.status = HTTPStatus.OK
