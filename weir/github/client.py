"""GitHub REST client used by the sync workers.

Every call carries an explicit timeout, records the quota headers GitHub
returns, and, for cacheable reads, consults the injected
:class:`~weir.cache.ResponseCache` and revalidates stale entries with
``If-None-Match``.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

import httpx

from weir.cache import Fetched, commit_cache_key, repository_cache_key
from weir.common.env import parse_positive_float, read_str
from weir.common.time import ensure_utc, from_epoch_seconds
from weir.logging import get_logger, log_debug

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .models import CommitPage, RateLimitInfo, TimelinePage
from .ratelimit import parse_rate_limit

if typ.TYPE_CHECKING:
    from weir.cache import ResponseCache

logger = get_logger(__name__)

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_NOT_MODIFIED = 304
SEARCH_PAGE_SIZE = 50
_DEFAULT_API_URL = "https://api.github.com"
_DEFAULT_TIMEOUT_S = 20.0
SEARCH_RESULT_CAP = 1000
COMMITS_PAGE_SIZE = 100


class GitHubActivityClient(typ.Protocol):
    """Interface the backfill runner needs from a GitHub client."""

    @property
    def last_rate_limit(self) -> RateLimitInfo | None:
        """Quota reported by the most recent response."""
        ...

    async def get_repository(self, full_name: str) -> dict[str, typ.Any]:
        """Return repository metadata."""
        ...

    async def search_timeline(
        self,
        full_name: str,
        *,
        since: dt.datetime,
        until: dt.datetime,
        cursor: str | None = None,
        etag: str | None = None,
    ) -> TimelinePage:
        """Return one page of issue and pull request activity."""
        ...

    async def list_commits(
        self,
        full_name: str,
        *,
        since: dt.datetime,
        until: dt.datetime,
        author: str | None = None,
        page: int = 1,
    ) -> CommitPage:
        """Return one page of commits made in the window."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubRestConfig:
    """Configuration for the GitHub REST API client."""

    token: str
    api_url: str = _DEFAULT_API_URL
    timeout_s: float = _DEFAULT_TIMEOUT_S
    user_agent: str = "weir/0.1"

    @classmethod
    def from_env(cls) -> GitHubRestConfig:
        """Build configuration from ``WEIR_GITHUB_*`` variables."""
        token = read_str("WEIR_GITHUB_TOKEN")
        if token is None:
            raise GitHubConfigError.missing_token()
        return cls(
            token=token,
            api_url=read_str("WEIR_GITHUB_API_URL") or _DEFAULT_API_URL,
            timeout_s=parse_positive_float("WEIR_GITHUB_TIMEOUT_S", _DEFAULT_TIMEOUT_S),
        )


def _iso(value: dt.datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def _timeline_query(full_name: str, since: dt.datetime, until: dt.datetime) -> str:
    return f"repo:{full_name} updated:{_iso(since)}..{_iso(until)}"


def _parse_page_cursor(cursor: str | None) -> int:
    if cursor is None:
        return 1
    try:
        page = int(cursor)
    except ValueError as exc:
        msg = f"invalid timeline cursor: {cursor!r}"
        raise ValueError(msg) from exc
    return max(page, 1)


def _next_cursor(page: int, total_count: int, item_count: int) -> str | None:
    fetched = page * SEARCH_PAGE_SIZE
    if item_count < SEARCH_PAGE_SIZE or fetched >= min(total_count, SEARCH_RESULT_CAP):
        return None
    return str(page + 1)


def _search_items(payload: object) -> tuple[int, list[dict[str, typ.Any]]]:
    if not isinstance(payload, dict):
        raise GitHubResponseShapeError.missing("search")
    items = payload.get("items")
    if not isinstance(items, list):
        raise GitHubResponseShapeError.missing("items")
    total = payload.get("total_count")
    total_count = total if isinstance(total, int) else len(items)
    return total_count, [item for item in items if isinstance(item, dict)]


class GitHubRestClient:
    """Async GitHub REST client with caching and quota tracking.

    Parameters
    ----------
    config
        Token, base URL and timeout.
    cache
        Optional response cache shared by this process's GitHub calls.
    http_client
        Optional ``httpx.AsyncClient`` for testing; when omitted the
        instance creates and owns its own client.

    """

    def __init__(
        self,
        config: GitHubRestConfig,
        *,
        cache: ResponseCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._cache = cache
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.api_url,
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/vnd.github+json",
            },
        )
        self._last_rate_limit: RateLimitInfo | None = None

    @property
    def last_rate_limit(self) -> RateLimitInfo | None:
        """Return the quota reported by the most recent response."""
        return self._last_rate_limit

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def get_repository(self, full_name: str) -> dict[str, typ.Any]:
        """Return repository metadata for ``owner/name``."""
        payload = await self._cached_get(
            repository_cache_key(full_name), f"/repos/{full_name}"
        )
        if not isinstance(payload, dict):
            raise GitHubResponseShapeError.missing("repository")
        return payload

    async def list_commits(
        self,
        full_name: str,
        *,
        since: dt.datetime,
        until: dt.datetime,
        author: str | None = None,
        page: int = 1,
    ) -> CommitPage:
        """Return one page of commits in the window, cached per query and page.

        A full page implies there may be another; the listing ends at the
        first page shorter than ``COMMITS_PAGE_SIZE``.
        """
        page = max(page, 1)
        params: dict[str, str | int] = {
            "since": _iso(since),
            "until": _iso(until),
            "per_page": COMMITS_PAGE_SIZE,
            "page": page,
        }
        if author:
            params["author"] = author
        payload = await self._cached_get(
            commit_cache_key([full_name], since, until, author, page),
            f"/repos/{full_name}/commits",
            params=params,
        )
        if not isinstance(payload, list):
            raise GitHubResponseShapeError.missing("commits")
        return CommitPage(
            items=[item for item in payload if isinstance(item, dict)],
            page=page,
            next_page=page + 1 if len(payload) >= COMMITS_PAGE_SIZE else None,
        )

    async def search_timeline(
        self,
        full_name: str,
        *,
        since: dt.datetime,
        until: dt.datetime,
        cursor: str | None = None,
        etag: str | None = None,
    ) -> TimelinePage:
        """Return one page of issues and pull requests updated in the window.

        ``cursor`` is the opaque value from a previous page's
        ``next_cursor``. When ``etag`` is supplied GitHub may answer ``304``
        and the returned page is marked ``not_modified``.
        """
        page = _parse_page_cursor(cursor)
        headers = {"If-None-Match": etag} if etag else None
        response = await self._request(
            "/search/issues",
            params={
                "q": _timeline_query(full_name, since, until),
                "sort": "updated",
                "order": "asc",
                "per_page": SEARCH_PAGE_SIZE,
                "page": page,
            },
            headers=headers,
        )
        if response.status_code == _HTTP_NOT_MODIFIED:
            return TimelinePage(
                items=[],
                next_cursor=None,
                etag=etag,
                not_modified=True,
                rate_limit=self._last_rate_limit,
            )

        total_count, items = _search_items(response.json())
        return TimelinePage(
            items=items,
            next_cursor=_next_cursor(page, total_count, len(items)),
            total_count=min(total_count, SEARCH_RESULT_CAP),
            etag=response.headers.get("etag"),
            rate_limit=self._last_rate_limit,
        )

    async def get_rate_limit(self) -> RateLimitInfo:
        """Query ``/rate_limit``; the call itself does not consume quota."""
        response = await self._request("/rate_limit")
        payload = response.json()
        core = payload.get("resources", {}).get("core") if isinstance(payload, dict) else None
        if not isinstance(core, dict) or not isinstance(core.get("remaining"), int):
            raise GitHubResponseShapeError.missing("resources.core.remaining")
        reset = core.get("reset")
        limit = core.get("limit")
        return RateLimitInfo(
            remaining=core["remaining"],
            reset_at=from_epoch_seconds(reset) if isinstance(reset, int) else None,
            limit=limit if isinstance(limit, int) else None,
        )

    async def _cached_get(
        self,
        key: str,
        path: str,
        *,
        params: dict[str, str | int] | None = None,
    ) -> typ.Any:  # noqa: ANN401 - JSON payload
        if self._cache is None:
            response = await self._request(path, params=params)
            return response.json()

        previous = self._cache.lookup(key)

        async def fetch() -> Fetched:
            headers = (
                {"If-None-Match": previous.etag}
                if previous is not None and previous.etag
                else None
            )
            response = await self._request(path, params=params, headers=headers)
            if response.status_code == _HTTP_NOT_MODIFIED and previous is not None:
                log_debug(logger, "GitHub %s not modified; reusing cached payload", path)
                return Fetched(previous.data, previous.etag)
            return Fetched(response.json(), response.headers.get("etag"))

        return await self._cache.get(key, fetch)

    async def _request(
        self,
        path: str,
        *,
        params: dict[str, str | int] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.get(path, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise GitHubAPIError.timeout(path) from exc
        except httpx.TransportError as exc:
            raise GitHubAPIError.transport(path, exc) from exc

        rate_limit = parse_rate_limit(response.headers)
        if rate_limit is not None:
            self._last_rate_limit = rate_limit

        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(
                response.status_code,
                path=path,
                quota_exhausted=rate_limit is not None and rate_limit.remaining == 0,
                reset_at=rate_limit.reset_at if rate_limit is not None else None,
            )
        return response
