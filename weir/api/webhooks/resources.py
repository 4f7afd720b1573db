"""GitHub webhook intake endpoint.

``POST /webhooks/github`` verifies the ``X-Hub-Signature-256`` header over
the raw body, stores the delivery through an envelope sink and acknowledges
immediately. Canonicalization happens later, out of band, when the optional
dispatcher schedules it.

Every failure path answers with ``{"error": ...}`` so GitHub's delivery log
shows why a delivery was refused; any 5xx makes GitHub redeliver.
"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

import msgspec

from weir.bronze.services import IncomingDelivery, extract_installation_id
from weir.logging import get_logger, log_exception, log_info, log_warning
from weir.webhooks.config import WebhookSecrets
from weir.webhooks.signature import verify_signature

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

__all__ = ["EnvelopeSink", "GitHubWebhookResource", "WebhookDispatcher"]

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
DELIVERY_HEADER = "X-GitHub-Delivery"
EVENT_HEADER = "X-GitHub-Event"


class EnvelopeSink(typ.Protocol):
    """Durable store for verified deliveries."""

    async def enqueue(self, delivery: IncomingDelivery) -> int:
        """Store ``delivery`` idempotently and return its envelope id."""
        ...


class WebhookDispatcher(typ.Protocol):
    """Schedules asynchronous processing of a stored envelope."""

    def dispatch(self, envelope_id: int) -> None:
        """Request processing of ``envelope_id``."""
        ...


def _error(resp: Response, status: HTTPStatus, message: str) -> None:
    resp.status = status
    resp.media = {"error": message}


class GitHubWebhookResource:
    """Verify, store and acknowledge GitHub deliveries.

    Parameters
    ----------
    sink
        Envelope store receiving verified deliveries.
    secrets
        Callable returning the signing secrets. It runs per request so a
        rotated secret takes effect without a restart.
    dispatcher
        Optional hook that schedules processing after the envelope is stored.

    """

    def __init__(
        self,
        sink: EnvelopeSink,
        *,
        secrets: typ.Callable[[], WebhookSecrets] = WebhookSecrets.from_env,
        dispatcher: WebhookDispatcher | None = None,
    ) -> None:
        """Store collaborators."""
        self._sink = sink
        self._secrets = secrets
        self._dispatcher = dispatcher

    async def on_post(self, req: Request, resp: Response) -> None:
        """Handle POST /webhooks/github."""
        signature = req.get_header(SIGNATURE_HEADER)
        delivery_id = req.get_header(DELIVERY_HEADER)
        event = req.get_header(EVENT_HEADER)
        if not signature or not delivery_id or not event:
            _error(resp, HTTPStatus.BAD_REQUEST, "Missing required webhook headers")
            return

        body = await req.stream.read()

        secrets = self._secrets()
        if not secrets.configured or secrets.current is None:
            log_warning(logger, "Webhook secret not configured; refusing %s", delivery_id)
            _error(resp, HTTPStatus.INTERNAL_SERVER_ERROR, "Webhook secret not configured")
            return

        if not verify_signature(body, signature, secrets.current, secrets.previous):
            log_warning(
                logger,
                "Invalid webhook signature for delivery %s (%s)",
                delivery_id,
                event,
            )
            _error(resp, HTTPStatus.UNAUTHORIZED, "Invalid signature")
            return

        try:
            payload = msgspec.json.decode(body)
        except msgspec.DecodeError:
            _error(resp, HTTPStatus.BAD_REQUEST, "Invalid JSON payload")
            return
        if not isinstance(payload, dict):
            _error(resp, HTTPStatus.BAD_REQUEST, "Invalid JSON payload")
            return

        installation_id = extract_installation_id(payload)
        try:
            envelope_id = await self._sink.enqueue(
                IncomingDelivery(
                    delivery_id=delivery_id,
                    event=event,
                    payload=payload,
                    installation_id=installation_id,
                )
            )
            if self._dispatcher is not None:
                self._dispatcher.dispatch(envelope_id)
        except Exception as exc:  # noqa: BLE001 - GitHub retries on 5xx
            log_exception(logger, f"Webhook {delivery_id} could not be stored", exc)
            _error(resp, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal server error")
            return

        log_info(
            logger,
            "Webhook %s (%s) enqueued as envelope %d for installation %s",
            delivery_id,
            event,
            envelope_id,
            installation_id,
        )
        resp.status = HTTPStatus.OK
        resp.media = {"ok": True, "deliveryId": delivery_id}
