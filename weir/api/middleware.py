"""Request-scoped SQLAlchemy sessions for the Falcon ASGI app.

Each request gets a fresh ``AsyncSession`` on ``req.context.session``.
Resources read through it instead of opening sessions of their own; the
middleware commits on 2xx/3xx, rolls back on 4xx/5xx and always closes.
"""

from __future__ import annotations

import typing as typ

from sqlalchemy.exc import SQLAlchemyError

from weir.logging import get_logger, log_error

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["SQLAlchemySessionManager"]

logger = get_logger(__name__)


class SQLAlchemySessionManager:
    """Falcon middleware attaching an ``AsyncSession`` to each request.

    Parameters
    ----------
    session_factory
        Async session factory bound to the application's database engine.

    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory."""
        self._session_factory = session_factory

    async def process_request(self, req: Request, _resp: Response) -> None:
        """Open a session for the request.

        The session outlives this hook, so it is created with a bare
        factory call and closed in :meth:`process_response`.
        """
        req.context.session = self._session_factory()

    async def process_response(
        self,
        req: Request,
        resp: Response,
        _resource: object,
        req_succeeded: bool,  # noqa: FBT001 - Falcon middleware signature
    ) -> None:
        """Commit on success, roll back on error, close always."""
        session: AsyncSession | None = getattr(req.context, "session", None)
        if session is None:
            return

        committable = req_succeeded and not str(resp.status).startswith(("4", "5"))
        try:
            if session.is_active:
                if committable:
                    await session.commit()
                else:
                    await session.rollback()
        except SQLAlchemyError:
            log_error(logger, "Session cleanup failed during process_response")
            if session.is_active:
                await session.rollback()
            raise
        finally:
            await session.close()
