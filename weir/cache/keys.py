"""Deterministic cache keys for parameterised GitHub queries."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import hashlib
import typing as typ

from weir.common.time import ensure_utc, parse_iso_datetime
from weir.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

type DateInput = str | dt.datetime

_ALL_AUTHORS = "all"


@dc.dataclass(frozen=True, slots=True)
class ParsedCacheKey:
    """Namespace and digest components of a generated key."""

    namespace: str
    digest: str


def normalize_timestamp(value: DateInput) -> str:
    """Render ``value`` as a canonical UTC ISO-8601 string.

    Unparseable strings are returned unchanged (with a warning) so a bad
    input still yields a stable, if unshared, key.
    """
    if isinstance(value, dt.datetime):
        return ensure_utc(value).isoformat()
    try:
        return parse_iso_datetime(value).isoformat()
    except ValueError:
        log_warning(logger, "Unparseable cache key date %r; using as-is", value)
        return value


def _digest(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def commit_cache_key(
    repositories: cabc.Iterable[str],
    since: DateInput,
    until: DateInput,
    author: str | None = None,
    page: int = 1,
) -> str:
    """Return the cache key for one page of a commit query.

    Repository order and date formatting do not affect the key. The first
    page shares its key with an unpaged query.

    >>> a = commit_cache_key(["b/x", "a/y"], "2024-01-01T00:00:00Z", "2024-01-02")
    >>> b = commit_cache_key(["a/y", "b/x"], "2024-01-01T00:00:00+00:00", "2024-01-02")
    >>> a == b
    True

    """
    return "commits:" + _digest(
        "commits",
        ",".join(sorted(repositories)),
        normalize_timestamp(since),
        normalize_timestamp(until),
        author or _ALL_AUTHORS,
        *((f"page={page}",) if page > 1 else ()),
    )


def repository_cache_key(full_name: str) -> str:
    """Return the cache key for repository metadata."""
    return "repository:" + _digest("repository", full_name.lower())


def parse_cache_key(key: str) -> ParsedCacheKey:
    """Split ``key`` into its namespace and digest."""
    namespace, sep, digest = key.partition(":")
    if not sep:
        return ParsedCacheKey(namespace="unknown", digest=key)
    return ParsedCacheKey(namespace=namespace or "unknown", digest=digest)
