"""Per-installation rate-limit bookkeeping.

Every GitHub response carries ``x-ratelimit-remaining`` and
``x-ratelimit-reset`` headers. Workers record them against the installation
after each call (last writer wins) and consult the stored budget before
starting more calls, pausing backfills that would exhaust the quota.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from weir.common.time import from_epoch_seconds, utcnow
from weir.github.models import RateLimitInfo
from weir.github.storage import Installation
from weir.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

MIN_BACKFILL_BUDGET = 100
DEFAULT_BLOCKED_DELAY = dt.timedelta(minutes=5)

_REMAINING_HEADER = "x-ratelimit-remaining"
_RESET_HEADER = "x-ratelimit-reset"
_LIMIT_HEADER = "x-ratelimit-limit"


def _header_int(headers: httpx.Headers, name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def parse_rate_limit(
    headers: httpx.Headers | cabc.Mapping[str, str],
) -> RateLimitInfo | None:
    """Extract quota information from response headers.

    Returns ``None`` when ``x-ratelimit-remaining`` is absent or malformed.
    The reset header is epoch seconds.
    """
    normalised = headers if isinstance(headers, httpx.Headers) else httpx.Headers(headers)
    remaining = _header_int(normalised, _REMAINING_HEADER)
    if remaining is None:
        return None
    reset_epoch = _header_int(normalised, _RESET_HEADER)
    return RateLimitInfo(
        remaining=remaining,
        reset_at=from_epoch_seconds(reset_epoch) if reset_epoch is not None else None,
        limit=_header_int(normalised, _LIMIT_HEADER),
    )


@dc.dataclass(frozen=True, slots=True)
class RateBudget:
    """Stored quota snapshot for one installation."""

    installation_id: int
    remaining: int | None
    reset_at: dt.datetime | None


def should_pause(
    budget: RateBudget | RateLimitInfo | None,
    *,
    now: dt.datetime,
    min_budget: int = MIN_BACKFILL_BUDGET,
) -> bool:
    """Return ``True`` when further calls should wait for the quota reset.

    A budget whose reset time has already passed is treated as replenished.
    """
    if budget is None or budget.remaining is None:
        return False
    if budget.remaining > min_budget:
        return False
    return budget.reset_at is None or budget.reset_at > now


def blocked_until_for(
    reset_at: dt.datetime | None,
    *,
    now: dt.datetime,
    default_delay: dt.timedelta = DEFAULT_BLOCKED_DELAY,
) -> dt.datetime:
    """Return the wake time for a job paused on quota."""
    if reset_at is not None and reset_at > now:
        return reset_at
    return now + default_delay


class RateLimitTracker:
    """Read and write installation quota and sync cursors."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for installation rows."""
        self._session_factory = session_factory

    async def register_installation(
        self, installation_id: int, account_login: str
    ) -> Installation:
        """Create the installation row, or return the existing one."""
        async with self._session_factory() as session:
            existing = await self._load(session, installation_id)
            if existing is not None:
                if existing.account_login != account_login:
                    existing.account_login = account_login
                    await session.commit()
                return existing

            installation = Installation(
                installation_id=installation_id, account_login=account_login
            )
            session.add(installation)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                winner = await self._load(session, installation_id)
                if winner is None:
                    raise
                return winner
            return installation

    async def update_budget(
        self,
        installation_id: int,
        remaining: int,
        reset_at: dt.datetime | None,
    ) -> bool:
        """Overwrite the stored quota; ``False`` when the installation is unknown."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(Installation)
                .where(Installation.installation_id == installation_id)
                .values(rate_limit_remaining=remaining, rate_limit_reset=reset_at)
            )
        updated = result.rowcount == 1
        if updated:
            log_debug(
                logger,
                "Installation %d budget remaining=%d reset_at=%s",
                installation_id,
                remaining,
                reset_at.isoformat() if reset_at else None,
            )
        return updated

    async def record(self, installation_id: int, info: RateLimitInfo | None) -> bool:
        """Store ``info`` when present; convenience for client responses."""
        if info is None:
            return False
        return await self.update_budget(installation_id, info.remaining, info.reset_at)

    async def get_budget(self, installation_id: int) -> RateBudget | None:
        """Return the stored quota or ``None`` for unknown installations."""
        async with self._session_factory() as session:
            installation = await self._load(session, installation_id)
        if installation is None:
            return None
        return RateBudget(
            installation_id=installation_id,
            remaining=installation.rate_limit_remaining,
            reset_at=installation.rate_limit_reset,
        )

    async def update_sync_state(
        self,
        installation_id: int,
        *,
        last_cursor: str | None = None,
        etag: str | None = None,
        last_synced_at: dt.datetime | None = None,
        status: str | None = None,
    ) -> bool:
        """Patch only the supplied sync fields of an installation."""
        values: dict[str, object] = {
            key: value
            for key, value in (
                ("last_cursor", last_cursor),
                ("etag", etag),
                ("last_synced_at", last_synced_at),
                ("sync_status", status),
            )
            if value is not None
        }
        if not values:
            return False
        values["updated_at"] = utcnow()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(Installation)
                .where(Installation.installation_id == installation_id)
                .values(**values)
            )
        return result.rowcount == 1

    @staticmethod
    async def _load(session: AsyncSession, installation_id: int) -> Installation | None:
        return await session.scalar(
            select(Installation).where(Installation.installation_id == installation_id)
        )
