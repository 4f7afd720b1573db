"""Weir runtime entrypoint.

This module provides the ASGI application factory used by Granian. It
delegates to :func:`weir.api.app.create_app` while keeping the
``weir.runtime:create_app`` entrypoint stable.

Configuration is driven by environment variables:

- ``WEIR_HOST``: Bind address (default ``0.0.0.0``)
- ``WEIR_PORT``: Listen port (default ``8080``)
- ``WEIR_LOG_LEVEL``: Log level (default ``INFO``)
- ``WEIR_DATABASE_URL``: Database connection URL (optional; enables
  webhook intake and job status endpoints when set)
- ``WEIR_WEBHOOK_DISPATCH``: When truthy, stored webhook envelopes are sent
  to the ``process_webhook_job`` Dramatiq actor

Run the service directly with ``python -m weir.runtime``.
"""

from __future__ import annotations

import os
import typing as typ

from weir.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["create_app", "main"]

logger = get_logger(__name__)

# TCP port number range limits
_MIN_PORT = 1
_MAX_PORT = 65535
_TRUTHY = frozenset({"1", "true", "yes"})


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301 - unify conversion and range errors
    except ValueError as exc:
        log_error(
            logger,
            "Invalid WEIR_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def create_app() -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    When ``WEIR_DATABASE_URL`` is set the app stores webhook deliveries and
    serves ``/ingestion/jobs``. Otherwise only ``/health`` and ``/ready``
    are available.
    """
    from weir.api.app import create_app as _create_api_app

    database_url = os.environ.get("WEIR_DATABASE_URL")

    if database_url is None:
        return _create_api_app()

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from weir.api.app import AppDependencies
    from weir.bronze.services import EnvelopeWriter

    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    dispatcher = None
    if os.environ.get("WEIR_WEBHOOK_DISPATCH", "").lower() in _TRUTHY:
        from weir.tasks.actors import DramatiqWebhookDispatcher

        dispatcher = DramatiqWebhookDispatcher(database_url)

    deps = AppDependencies(
        session_factory=session_factory,
        webhook_sink=EnvelopeWriter(session_factory),
        webhook_dispatcher=dispatcher,
    )
    return _create_api_app(deps)


def main() -> None:
    """Start the Weir runtime server using Granian.

    Reads ``WEIR_HOST``, ``WEIR_PORT``, and ``WEIR_LOG_LEVEL`` from the
    environment and starts the ASGI server.
    """
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("WEIR_HOST", "0.0.0.0")  # noqa: S104 - bind all interfaces for container
    port = _parse_port(os.environ.get("WEIR_PORT", "8080"))
    log_level_str = os.environ.get("WEIR_LOG_LEVEL", "INFO")

    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid WEIR_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    log_info(
        logger,
        "Starting Weir runtime on %s:%d (log_level=%s)",
        host,
        port,
        normalized_level,
    )

    server = Granian(
        "weir.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    )
    server.serve()


if __name__ == "__main__":
    main()
