"""Turn stored webhook envelopes into canonical facts."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from weir.bronze.services import EnvelopeStore
from weir.bronze.storage import EnvelopeStatus
from weir.github.ratelimit import RateLimitTracker
from weir.logging import get_logger, log_debug
from weir.silver.canonicalize import canonicalize_webhook
from weir.silver.services import CanonicalFactService, PersistStatus
from weir.sync.observability import IngestionEventLogger

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class WebhookProcessResult:
    """Counts from processing one envelope."""

    envelope_id: int
    processed: bool
    inserted: int = 0
    duplicates: int = 0
    skipped: int = 0
    error: str | None = None


class WebhookProcessor:
    """Claim an envelope, canonicalize it and persist its facts.

    Redelivered messages are harmless: completed envelopes are skipped and
    fact writes are idempotent on content hash. Failures are recorded on the
    envelope and returned rather than raised.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        facts: CanonicalFactService | None = None,
        envelopes: EnvelopeStore | None = None,
        tracker: RateLimitTracker | None = None,
        events: IngestionEventLogger | None = None,
    ) -> None:
        """Wire collaborators, defaulting each to one over ``session_factory``."""
        self._facts = facts or CanonicalFactService(session_factory)
        self._envelopes = envelopes or EnvelopeStore(session_factory)
        self._tracker = tracker or RateLimitTracker(session_factory)
        self._events = events or IngestionEventLogger()

    async def process(self, envelope_id: int) -> WebhookProcessResult:
        """Process ``envelope_id`` unless it is missing, done or claimed elsewhere."""
        envelope = await self._envelopes.get(envelope_id)
        if envelope is None or envelope.status == EnvelopeStatus.COMPLETED.value:
            return WebhookProcessResult(envelope_id=envelope_id, processed=False)
        if not await self._envelopes.claim(envelope_id):
            log_debug(logger, "Envelope %d already claimed", envelope_id)
            return WebhookProcessResult(envelope_id=envelope_id, processed=False)

        try:
            counts = await self._persist(
                envelope.event, envelope.payload, envelope.installation_id
            )
            if envelope.event == "installation" and envelope.installation_id:
                await self._register_installation(
                    envelope.installation_id, envelope.payload
                )
        except Exception as exc:  # noqa: BLE001 - recorded on the envelope
            await self._envelopes.mark_failed(envelope_id, str(exc))
            self._events.log_webhook_failed(envelope_id, envelope.event, exc)
            return WebhookProcessResult(
                envelope_id=envelope_id, processed=False, error=str(exc)
            )

        await self._envelopes.mark_completed(envelope_id)
        self._events.log_webhook_processed(
            envelope_id,
            envelope.event,
            counts[PersistStatus.INSERTED],
            counts[PersistStatus.DUPLICATE],
            counts[PersistStatus.SKIPPED],
        )
        return WebhookProcessResult(
            envelope_id=envelope_id,
            processed=True,
            inserted=counts[PersistStatus.INSERTED],
            duplicates=counts[PersistStatus.DUPLICATE],
            skipped=counts[PersistStatus.SKIPPED],
        )

    async def process_pending(self, limit: int = 100) -> list[WebhookProcessResult]:
        """Process pending envelopes oldest first."""
        pending = await self._envelopes.list_pending(limit)
        return [await self.process(envelope.id) for envelope in pending]

    async def _persist(
        self,
        event: str,
        payload: dict[str, typ.Any],
        installation_id: int | None,
    ) -> dict[PersistStatus, int]:
        counts = dict.fromkeys(PersistStatus, 0)
        for canonical in canonicalize_webhook(event, payload):
            result = await self._facts.persist_canonical_event(
                canonical, installation_id=installation_id
            )
            counts[result.status] += 1
        return counts

    async def _register_installation(
        self, installation_id: int, payload: dict[str, typ.Any]
    ) -> None:
        account = payload.get("installation", {}).get("account") or {}
        login = account.get("login") if isinstance(account, dict) else None
        if isinstance(login, str) and login:
            await self._tracker.register_installation(installation_id, login)
