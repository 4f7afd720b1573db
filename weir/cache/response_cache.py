"""In-process cache for upstream GitHub API responses.

Entries expire after a per-entry TTL and the cache evicts the least recently
used entry once ``max_size`` is reached. Entries may carry the ETag GitHub
returned so callers can revalidate with ``If-None-Match`` instead of
re-downloading.

The cache lives in one process. Each worker process constructs its own
instance and hands it to the components that call GitHub; nothing is shared
between processes. Within a process the instance is shared by every worker
thread, so reads and writes of the entry table hold a lock.

Example
-------
>>> cache = ResponseCache(max_size=2, default_ttl=60.0)
>>> cache.set("repo:octo/weir", {"id": 1}, etag='W/"abc"')
>>> cache.peek("repo:octo/weir")
{'id': 1}
>>> cache.get_etag("repo:octo/weir")
'W/"abc"'

"""

from __future__ import annotations

import dataclasses as dc
import threading
import time
import typing as typ

from weir.logging import get_logger, log_debug, log_info

logger = get_logger(__name__)

type Clock = typ.Callable[[], float]
type Fetcher = typ.Callable[[], typ.Awaitable[typ.Any]]

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_S = 300.0


@dc.dataclass(slots=True)
class CacheEntry:
    """A cached payload plus the bookkeeping needed for TTL and LRU.

    Attributes
    ----------
    key
        Cache key the entry is stored under.
    data
        Cached payload, returned to callers as-is.
    etag
        Validator from the upstream response, when one was supplied.
    timestamp
        Clock reading when the entry was written.
    ttl
        Seconds the entry stays fresh after ``timestamp``.
    last_accessed
        Clock reading of the most recent read or write.

    """

    key: str
    data: typ.Any
    timestamp: float
    ttl: float
    last_accessed: float
    etag: str | None = None

    def is_fresh(self, now: float) -> bool:
        """Return ``True`` while ``now - timestamp <= ttl``."""
        return now - self.timestamp <= self.ttl


@dc.dataclass(frozen=True, slots=True)
class Fetched:
    """Fetcher result carrying an ETag alongside the payload."""

    data: typ.Any
    etag: str | None = None


@dc.dataclass(frozen=True, slots=True)
class CacheStats:
    """Point-in-time cache counters."""

    hits: int
    misses: int
    evictions: int
    expirations: int
    size: int
    max_size: int

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups served from the cache (0 when unused)."""
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dc.dataclass(slots=True)
class _Counters:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0


class ResponseCache:
    """TTL and LRU bounded cache of upstream responses.

    Parameters
    ----------
    max_size
        Maximum number of entries held at once.
    default_ttl
        Freshness window in seconds for entries written without a TTL.
    clock
        Source of the current time in seconds; injectable for tests.

    """

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_S,
        clock: Clock = time.time,
    ) -> None:
        """Create an empty cache."""
        if max_size < 1:
            msg = f"max_size must be positive, got {max_size}"
            raise ValueError(msg)
        if default_ttl < 0:
            msg = f"default_ttl must not be negative, got {default_ttl}"
            raise ValueError(msg)

        self._entries: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._counters = _Counters()

    @property
    def max_size(self) -> int:
        """Return the configured capacity."""
        return self._max_size

    @property
    def default_ttl(self) -> float:
        """Return the TTL applied when callers do not pass one."""
        return self._default_ttl

    def __len__(self) -> int:
        """Return the number of stored entries, fresh or stale."""
        return len(self._entries)

    async def get(
        self,
        key: str,
        fetcher: Fetcher,
        *,
        ttl: float | None = None,
        force_refresh: bool = False,
    ) -> typ.Any:  # noqa: ANN401 - payloads are caller-defined JSON
        """Return the cached payload for ``key``, fetching on a miss.

        Parameters
        ----------
        key
            Cache key.
        fetcher
            Coroutine function producing the payload. It may return a
            :class:`Fetched` to store an ETag with the payload.
        ttl
            Freshness window for a newly fetched entry.
        force_refresh
            Skip the freshness check and always call ``fetcher``.

        Returns
        -------
        Any
            Cached or freshly fetched payload.

        """
        if force_refresh:
            log_debug(logger, "Force refresh requested for %s", key)
            return await self._fetch_and_store(key, fetcher, ttl)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                now = self._clock()
                entry.last_accessed = now
                if entry.is_fresh(now):
                    self._counters.hits += 1
                    log_debug(logger, "Cache hit for %s", key)
                    return entry.data

                log_debug(logger, "Cache entry for %s is stale", key)
                self._entries.pop(key, None)
                self._counters.expirations += 1

            self._counters.misses += 1
        log_debug(logger, "Cache miss for %s", key)
        return await self._fetch_and_store(key, fetcher, ttl)

    async def _fetch_and_store(
        self, key: str, fetcher: Fetcher, ttl: float | None
    ) -> typ.Any:  # noqa: ANN401 - payloads are caller-defined JSON
        result = await fetcher()
        if isinstance(result, Fetched):
            self.set(key, result.data, ttl=ttl, etag=result.etag)
            return result.data
        self.set(key, result, ttl=ttl)
        return result

    def set(
        self,
        key: str,
        data: object,
        *,
        ttl: float | None = None,
        etag: str | None = None,
    ) -> None:
        """Store ``data`` under ``key``, evicting the LRU entry when full."""
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._evict_lru()

            self._entries[key] = CacheEntry(
                key=key,
                data=data,
                etag=etag,
                timestamp=now,
                ttl=self._default_ttl if ttl is None else ttl,
                last_accessed=now,
            )

    def has(self, key: str) -> bool:
        """Return ``True`` when a fresh entry exists for ``key``.

        A stale entry is left in place; use :meth:`peek` or :meth:`cleanup`
        to drop it.
        """
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh(self._clock())

    def peek(self, key: str) -> typ.Any | None:  # noqa: ANN401 - caller-defined JSON
        """Return a fresh payload without fetching, refreshing its recency."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            now = self._clock()
            if not entry.is_fresh(now):
                self._entries.pop(key, None)
                self._counters.expirations += 1
                return None

            entry.last_accessed = now
            return entry.data

    def lookup(self, key: str) -> CacheEntry | None:
        """Return the raw entry, fresh or stale, without bookkeeping.

        Conditional revalidation needs the stale payload and its ETag so a
        ``304 Not Modified`` can be answered from memory.
        """
        return self._entries.get(key)

    def get_etag(self, key: str) -> str | None:
        """Return the stored ETag for ``key``, fresh or stale."""
        entry = self._entries.get(key)
        return entry.etag if entry is not None else None

    def delete(self, key: str) -> bool:
        """Remove ``key``; return ``True`` when an entry was removed."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            log_debug(logger, "Cache entry %s deleted", key)
        return removed

    def clear(self) -> None:
        """Drop every entry. Statistics are kept."""
        with self._lock:
            cleared = len(self._entries)
            self._entries.clear()
        log_info(logger, "Response cache cleared (%d entries)", cleared)

    def cleanup(self) -> int:
        """Remove every stale entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [
                key for key, entry in self._entries.items() if not entry.is_fresh(now)
            ]
            for key in stale:
                del self._entries[key]
            self._counters.expirations += len(stale)
            remaining = len(self._entries)
        if stale:
            log_info(
                logger,
                "Removed %d expired cache entries (%d remain)",
                len(stale),
                remaining,
            )
        return len(stale)

    def keys(self) -> list[str]:
        """Return the stored keys in insertion order."""
        with self._lock:
            return list(self._entries)

    def get_stats(self) -> CacheStats:
        """Return a snapshot of the cache counters."""
        with self._lock:
            return CacheStats(
                hits=self._counters.hits,
                misses=self._counters.misses,
                evictions=self._counters.evictions,
                expirations=self._counters.expirations,
                size=len(self._entries),
                max_size=self._max_size,
            )

    def reset_stats(self) -> None:
        """Zero every counter."""
        with self._lock:
            self._counters = _Counters()

    def _evict_lru(self) -> None:
        # Caller holds ``self._lock``.
        victim = min(self._entries.values(), key=lambda entry: entry.last_accessed)
        del self._entries[victim.key]
        self._counters.evictions += 1
        log_debug(logger, "Evicted least recently used cache entry %s", victim.key)
