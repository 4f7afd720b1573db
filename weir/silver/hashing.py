"""Content hashes identifying canonical facts."""

from __future__ import annotations

import hashlib
import json
import typing as typ
from urllib.parse import urlsplit, urlunsplit

if typ.TYPE_CHECKING:
    import collections.abc as cabc


def stable_stringify(value: cabc.Mapping[str, object] | None) -> str:
    """Serialise ``value`` with sorted keys, dropping ``None`` entries."""
    if not value:
        return ""
    compacted = {key: item for key, item in value.items() if item is not None}
    if not compacted:
        return ""
    return json.dumps(compacted, sort_keys=True, separators=(",", ":"))


def normalize_url(url: str) -> str:
    """Lower-case scheme and host, drop the fragment and any trailing slash."""
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/")
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )


def compute_content_hash(
    event_type: str,
    *,
    gh_id: str | None,
    source_url: str,
    metrics: cabc.Mapping[str, object] | None = None,
    canonical_text: str = "",
) -> str:
    """Return the SHA-256 idempotency key for a canonical fact.

    The stable GitHub id identifies the fact; when GitHub supplied none the
    canonical text stands in for it.

    >>> a = compute_content_hash("pr_opened", gh_id="7", source_url="https://GitHub.com/o/r/pull/1/")
    >>> b = compute_content_hash("pr_opened", gh_id="7", source_url="https://github.com/o/r/pull/1")
    >>> a == b
    True

    """
    identity = gh_id.strip() if gh_id else f"text:{canonical_text.strip()}"
    material = "::".join(
        [
            event_type,
            identity,
            normalize_url(source_url),
            stable_stringify(metrics),
        ]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
