"""HMAC-SHA256 verification of GitHub webhook deliveries.

GitHub signs the raw request body with the webhook secret and sends the
digest as ``X-Hub-Signature-256: sha256=<hex>``. Verification must run over
the unparsed bytes; re-serialised JSON will not match.

During secret rotation both the current and the previous secret are
accepted until the previous one is removed from configuration.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` header value for ``payload``."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def _decode_digest(signature_header: str) -> bytes | None:
    hex_digest = signature_header[len(SIGNATURE_PREFIX) :]
    try:
        return bytes.fromhex(hex_digest)
    except ValueError:
        return None


def _matches(payload: bytes, provided: bytes, secret: str) -> bool:
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)


def verify_signature(
    payload: bytes,
    signature_header: str | None,
    current_secret: str,
    previous_secret: str | None = None,
) -> bool:
    """Return ``True`` when ``signature_header`` signs ``payload``.

    Parameters
    ----------
    payload
        Raw request body exactly as received.
    signature_header
        Value of ``X-Hub-Signature-256``; ``None`` when the header is absent.
    current_secret
        Active webhook secret.
    previous_secret
        Secret being rotated out, tried only when the current one fails.

    Returns
    -------
    bool
        ``False`` for absent, malformed, wrong-length or mismatched
        signatures. Never raises for bad header input.

    """
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    provided = _decode_digest(signature_header)
    if provided is None:
        return False

    if current_secret and _matches(payload, provided, current_secret):
        return True
    if previous_secret:
        return _matches(payload, provided, previous_secret)
    return False
