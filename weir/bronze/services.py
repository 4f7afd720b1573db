"""Services for storing and tracking raw webhook deliveries."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from weir.bronze.errors import EnvelopePersistError
from weir.bronze.storage import EnvelopeStatus, WebhookEnvelope
from weir.common.time import utcnow
from weir.logging import get_logger, log_debug, log_info

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

type Payload = dict[str, typ.Any]

logger = get_logger(__name__)

_DEFAULT_PENDING_LIMIT = 100
_CLAIMABLE_STATES = (EnvelopeStatus.PENDING.value, EnvelopeStatus.FAILED.value)


@dc.dataclass(frozen=True, slots=True)
class IncomingDelivery:
    """A verified webhook delivery awaiting durable storage."""

    delivery_id: str
    event: str
    payload: Payload
    installation_id: int | None = None


def extract_installation_id(payload: object) -> int | None:
    """Return ``payload["installation"]["id"]`` when it is an integer."""
    if not isinstance(payload, dict):
        return None
    installation = payload.get("installation")
    if not isinstance(installation, dict):
        return None
    value = installation.get("id")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


class EnvelopeWriter:
    """Idempotent writer for inbound deliveries keyed by delivery id.

    GitHub redelivers on any non-2xx response or timeout, so the same
    delivery id may arrive several times. The first insert wins and every
    retry resolves to the stored envelope.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for writes."""
        self._session_factory = session_factory

    async def enqueue(self, delivery: IncomingDelivery) -> int:
        """Persist ``delivery`` unless already stored and return the envelope id."""
        async with self._session_factory() as session:
            existing = await self._load_existing(session, delivery.delivery_id)
            if existing is not None:
                log_debug(
                    logger,
                    "Delivery %s already stored as envelope %d",
                    delivery.delivery_id,
                    existing.id,
                )
                return existing.id

            envelope = WebhookEnvelope(
                delivery_id=delivery.delivery_id,
                event=delivery.event,
                installation_id=delivery.installation_id,
                payload=delivery.payload,
                status=EnvelopeStatus.PENDING.value,
                received_at=utcnow(),
                retry_count=0,
            )
            session.add(envelope)

            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                winner = await self._load_existing(session, delivery.delivery_id)
                if winner is None:
                    raise EnvelopePersistError(delivery.delivery_id) from exc
                return winner.id

            log_info(
                logger,
                "Stored %s delivery %s as envelope %d",
                delivery.event,
                delivery.delivery_id,
                envelope.id,
            )
            return envelope.id

    @staticmethod
    async def _load_existing(
        session: AsyncSession, delivery_id: str
    ) -> WebhookEnvelope | None:
        return await session.scalar(
            select(WebhookEnvelope).where(WebhookEnvelope.delivery_id == delivery_id)
        )


class EnvelopeStore:
    """Status transitions used by the asynchronous envelope processor."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for reads and status writes."""
        self._session_factory = session_factory

    async def get(self, envelope_id: int) -> WebhookEnvelope | None:
        """Return the envelope with ``envelope_id`` or ``None``."""
        async with self._session_factory() as session:
            return await session.get(WebhookEnvelope, envelope_id)

    async def list_pending(
        self, limit: int = _DEFAULT_PENDING_LIMIT
    ) -> list[WebhookEnvelope]:
        """Return pending envelopes, oldest first."""
        async with self._session_factory() as session:
            stmt = (
                select(WebhookEnvelope)
                .where(WebhookEnvelope.status == EnvelopeStatus.PENDING.value)
                .order_by(WebhookEnvelope.received_at, WebhookEnvelope.id)
                .limit(limit)
            )
            return list((await session.scalars(stmt)).all())

    async def claim(self, envelope_id: int) -> bool:
        """Move a pending or failed envelope to processing.

        The status check and the write are one statement, so two workers
        handed the same envelope cannot both claim it.
        """
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(WebhookEnvelope)
                .where(
                    WebhookEnvelope.id == envelope_id,
                    WebhookEnvelope.status.in_(_CLAIMABLE_STATES),
                )
                .values(status=EnvelopeStatus.PROCESSING.value)
            )
            return result.rowcount == 1

    async def mark_completed(self, envelope_id: int) -> None:
        """Record successful processing."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(WebhookEnvelope)
                .where(WebhookEnvelope.id == envelope_id)
                .values(
                    status=EnvelopeStatus.COMPLETED.value,
                    processed_at=utcnow(),
                    error_message=None,
                )
            )

    async def mark_failed(self, envelope_id: int, error_message: str) -> None:
        """Record a processing failure and bump the retry counter."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(WebhookEnvelope)
                .where(WebhookEnvelope.id == envelope_id)
                .values(
                    status=EnvelopeStatus.FAILED.value,
                    error_message=error_message,
                    retry_count=WebhookEnvelope.retry_count + 1,
                )
            )
