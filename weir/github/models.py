"""Typed values exchanged with the GitHub REST API."""

from __future__ import annotations

import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """Quota headers reported on a GitHub response."""

    remaining: int
    reset_at: dt.datetime | None = None
    limit: int | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class TimelinePage:
    """One page of repository activity from the issue search API.

    Attributes
    ----------
    items
        Raw search result items (issues and pull requests).
    next_cursor
        Opaque cursor for the following page, or ``None`` when exhausted.
    total_count
        Total matches reported by GitHub, capped by the search API.
    etag
        Validator for conditional re-fetch of this page.
    not_modified
        ``True`` when GitHub answered ``304`` to a conditional request; the
        page then carries no items.

    """

    items: list[dict[str, typ.Any]]
    next_cursor: str | None
    total_count: int | None = None
    etag: str | None = None
    not_modified: bool = False
    rate_limit: RateLimitInfo | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class CommitPage:
    """One page of the repository commit listing.

    ``next_page`` is the 1-based page number to request next, or ``None``
    when this page was the last.
    """

    items: list[dict[str, typ.Any]]
    page: int
    next_page: int | None
