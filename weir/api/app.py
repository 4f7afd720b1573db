"""Application factory for the Weir Falcon ASGI application.

This module provides ``create_app()`` which builds the Falcon ASGI
application. Health probes are always registered; the webhook intake and
job status endpoints are added when their collaborators are supplied.

Usage
-----
Create a health-only app (no database)::

    app = create_app()

Create a full app::

    from weir.api.app import AppDependencies, create_app
    from weir.bronze import EnvelopeWriter

    deps = AppDependencies(
        session_factory=session_factory,
        webhook_sink=EnvelopeWriter(session_factory),
    )
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from weir.api.errors import (
    InvalidInputError,
    handle_invalid_input,
    handle_job_not_found,
)
from weir.api.health.resources import HealthResource, ReadyResource
from weir.jobs.errors import JobNotFoundError
from weir.webhooks.config import WebhookSecrets

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from weir.api.webhooks.resources import EnvelopeSink, WebhookDispatcher

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    Attributes
    ----------
    session_factory
        Async session factory; enables session middleware and the
        ``/ingestion/jobs`` endpoints.
    webhook_sink
        Envelope store; enables ``POST /webhooks/github``.
    webhook_secrets
        Callable returning the signing secrets, evaluated per request.
    webhook_dispatcher
        Optional hook scheduling processing of stored envelopes.

    """

    session_factory: async_sessionmaker[AsyncSession] | None = None
    webhook_sink: EnvelopeSink | None = None
    webhook_secrets: typ.Callable[[], WebhookSecrets] = WebhookSecrets.from_env
    webhook_dispatcher: WebhookDispatcher | None = None


def create_app(
    dependencies: AppDependencies | None = None,
) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Parameters
    ----------
    dependencies
        Optional application dependencies. When ``None``, only ``/health``
        and ``/ready`` are available.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    deps = dependencies or AppDependencies()
    middleware: list[object] = []

    if deps.session_factory is not None:
        from weir.api.middleware import SQLAlchemySessionManager

        middleware.append(SQLAlchemySessionManager(deps.session_factory))

    app = falcon.asgi.App(middleware=middleware)  # type: ignore[no-matching-overload]  # Falcon stubs

    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource())

    if deps.webhook_sink is not None:
        from weir.api.webhooks.resources import GitHubWebhookResource

        app.add_route(
            "/webhooks/github",
            GitHubWebhookResource(
                deps.webhook_sink,
                secrets=deps.webhook_secrets,
                dispatcher=deps.webhook_dispatcher,
            ),
        )

    if deps.session_factory is not None:
        from weir.api.jobs.resources import (
            IngestionJobCollectionResource,
            IngestionJobResource,
        )

        app.add_route("/ingestion/jobs", IngestionJobCollectionResource())
        app.add_route("/ingestion/jobs/{job_id}", IngestionJobResource())

    app.add_error_handler(JobNotFoundError, handle_job_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)

    return app
