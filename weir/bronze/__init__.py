"""Bronze layer primitives: raw webhook envelope storage."""

from __future__ import annotations

from .errors import (
    EnvelopePersistError,
    TimezoneAwareRequiredError,
)
from .services import (
    EnvelopeStore,
    EnvelopeWriter,
    IncomingDelivery,
    extract_installation_id,
)
from .storage import Base, EnvelopeStatus, UTCDateTime, WebhookEnvelope

__all__ = [
    "Base",
    "EnvelopePersistError",
    "EnvelopeStatus",
    "EnvelopeStore",
    "EnvelopeWriter",
    "IncomingDelivery",
    "TimezoneAwareRequiredError",
    "UTCDateTime",
    "WebhookEnvelope",
    "extract_installation_id",
]
