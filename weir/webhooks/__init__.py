"""GitHub webhook authentication and configuration."""

from __future__ import annotations

from .config import WebhookSecrets
from .signature import SIGNATURE_PREFIX, compute_signature, verify_signature

__all__ = [
    "SIGNATURE_PREFIX",
    "WebhookSecrets",
    "compute_signature",
    "verify_signature",
]
