"""Per-process response cache shielding GitHub from redundant calls."""

from __future__ import annotations

from .config import CacheConfig
from .keys import (
    ParsedCacheKey,
    commit_cache_key,
    normalize_timestamp,
    parse_cache_key,
    repository_cache_key,
)
from .response_cache import CacheEntry, CacheStats, Fetched, ResponseCache

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "Fetched",
    "ParsedCacheKey",
    "ResponseCache",
    "commit_cache_key",
    "normalize_timestamp",
    "parse_cache_key",
    "repository_cache_key",
]
