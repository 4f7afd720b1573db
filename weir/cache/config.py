"""Response cache configuration."""

from __future__ import annotations

import dataclasses as dc

from weir.cache.response_cache import DEFAULT_MAX_SIZE, DEFAULT_TTL_S, ResponseCache
from weir.common.env import parse_positive_float, parse_positive_int


@dc.dataclass(frozen=True, slots=True)
class CacheConfig:
    """Sizing for the per-process response cache.

    Attributes
    ----------
    max_size
        Maximum number of cached responses (``WEIR_CACHE_MAX_SIZE``).
    ttl_s
        Default freshness window in seconds (``WEIR_CACHE_TTL_SECONDS``).

    """

    max_size: int = DEFAULT_MAX_SIZE
    ttl_s: float = DEFAULT_TTL_S

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Build configuration from environment variables."""
        return cls(
            max_size=parse_positive_int("WEIR_CACHE_MAX_SIZE", DEFAULT_MAX_SIZE),
            ttl_s=parse_positive_float("WEIR_CACHE_TTL_SECONDS", DEFAULT_TTL_S),
        )

    def build(self) -> ResponseCache:
        """Construct a cache sized by this configuration."""
        return ResponseCache(max_size=self.max_size, default_ttl=self.ttl_s)
