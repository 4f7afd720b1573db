"""GitHub REST access, quota tracking and installation state."""

from __future__ import annotations

from .client import (
    COMMITS_PAGE_SIZE,
    SEARCH_PAGE_SIZE,
    SEARCH_RESULT_CAP,
    GitHubActivityClient,
    GitHubRestClient,
    GitHubRestConfig,
)
from .errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
    InstallationNotFoundError,
)
from .models import CommitPage, RateLimitInfo, TimelinePage
from .ratelimit import (
    DEFAULT_BLOCKED_DELAY,
    MIN_BACKFILL_BUDGET,
    RateBudget,
    RateLimitTracker,
    blocked_until_for,
    parse_rate_limit,
    should_pause,
)
from .storage import Installation

__all__ = [
    "COMMITS_PAGE_SIZE",
    "DEFAULT_BLOCKED_DELAY",
    "MIN_BACKFILL_BUDGET",
    "SEARCH_PAGE_SIZE",
    "SEARCH_RESULT_CAP",
    "CommitPage",
    "GitHubAPIError",
    "GitHubActivityClient",
    "GitHubConfigError",
    "GitHubResponseShapeError",
    "GitHubRestClient",
    "GitHubRestConfig",
    "Installation",
    "InstallationNotFoundError",
    "RateBudget",
    "RateLimitInfo",
    "RateLimitTracker",
    "TimelinePage",
    "blocked_until_for",
    "parse_rate_limit",
    "should_pause",
]
