"""Unit tests for the GitHub REST client using httpx.MockTransport."""

from __future__ import annotations

import datetime as dt
import typing as typ

import httpx
import pytest

from weir.cache import ResponseCache
from weir.github import (
    COMMITS_PAGE_SIZE,
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
    GitHubRestClient,
    GitHubRestConfig,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

BASE_URL = "https://api.github.test"
SINCE = dt.datetime(2024, 7, 1, tzinfo=dt.UTC)
UNTIL = dt.datetime(2024, 7, 8, tzinfo=dt.UTC)
RESET_EPOCH = 1_720_000_000

type Handler = cabc.Callable[[httpx.Request], httpx.Response]


def _quota_headers(remaining: int = 4999) -> dict[str, str]:
    return {
        "x-ratelimit-remaining": str(remaining),
        "x-ratelimit-reset": str(RESET_EPOCH),
        "x-ratelimit-limit": "5000",
    }


def _client(handler: Handler, *, cache: ResponseCache | None = None) -> GitHubRestClient:
    http_client = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(handler)
    )
    return GitHubRestClient(
        GitHubRestConfig(token="t0ken"),  # noqa: S106 - test token
        cache=cache,
        http_client=http_client,
    )


class TestConfig:
    """Tests for GitHubRestConfig."""

    def test_from_env_requires_token(self) -> None:
        """A missing token is a configuration error."""
        with pytest.raises(GitHubConfigError, match="WEIR_GITHUB_TOKEN"):
            GitHubRestConfig.from_env()

    def test_from_env_reads_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Token, base URL and timeout are read from the environment."""
        monkeypatch.setenv("WEIR_GITHUB_TOKEN", "abc")
        monkeypatch.setenv("WEIR_GITHUB_API_URL", BASE_URL)
        monkeypatch.setenv("WEIR_GITHUB_TIMEOUT_S", "3")

        config = GitHubRestConfig.from_env()

        assert config.token == "abc"  # noqa: S105 - test token
        assert config.api_url == BASE_URL
        assert config.timeout_s == pytest.approx(3.0)

    def test_blank_token_rejected_by_client(self) -> None:
        """The client refuses a whitespace token."""
        with pytest.raises(GitHubConfigError):
            GitHubRestClient(GitHubRestConfig(token="  "))


class TestGetRepository:
    """Tests for get_repository and its caching."""

    @pytest.mark.asyncio
    async def test_records_rate_limit(self) -> None:
        """Quota headers are exposed through last_rate_limit."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/repos/octo/weir"
            return httpx.Response(200, json={"id": 1}, headers=_quota_headers(321))

        client = _client(handler)
        payload = await client.get_repository("octo/weir")

        assert payload == {"id": 1}
        info = client.last_rate_limit
        assert info is not None
        assert info.remaining == 321
        assert info.limit == 5000
        assert info.reset_at == dt.datetime.fromtimestamp(RESET_EPOCH, tz=dt.UTC)

    @pytest.mark.asyncio
    async def test_cache_serves_repeat_reads(self) -> None:
        """A fresh cached repository is served without another request."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"id": 1}, headers={"etag": '"v1"'})

        client = _client(handler, cache=ResponseCache())
        await client.get_repository("octo/weir")
        await client.get_repository("octo/weir")

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_stale_entry_revalidates_with_etag(self) -> None:
        """A stale entry is revalidated and a 304 reuses the cached payload."""
        now = [0.0]
        cache = ResponseCache(default_ttl=10.0, clock=lambda: now[0])
        seen_etags: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_etags.append(request.headers.get("if-none-match"))
            if request.headers.get("if-none-match") == '"v1"':
                return httpx.Response(304, headers=_quota_headers())
            return httpx.Response(200, json={"id": 1}, headers={"etag": '"v1"'})

        client = _client(handler, cache=cache)
        await client.get_repository("octo/weir")
        now[0] = 60.0
        payload = await client.get_repository("octo/weir")

        assert payload == {"id": 1}
        assert seen_etags == [None, '"v1"']

    @pytest.mark.asyncio
    async def test_non_object_payload_is_shape_error(self) -> None:
        """A list where an object is expected is a shape error."""
        client = _client(lambda _request: httpx.Response(200, json=[]))
        with pytest.raises(GitHubResponseShapeError):
            await client.get_repository("octo/weir")


class TestErrors:
    """Tests for error classification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "headers", "transient", "rate_limited"),
        [
            (500, {}, True, False),
            (503, {}, True, False),
            (404, {}, False, False),
            (401, {}, False, False),
            (429, {}, True, True),
            (403, _quota_headers(0), True, True),
            (403, _quota_headers(10), False, False),
        ],
    )
    async def test_http_errors(
        self,
        status: int,
        headers: dict[str, str],
        transient: bool,  # noqa: FBT001 - parametrized
        rate_limited: bool,  # noqa: FBT001 - parametrized
    ) -> None:
        """Status codes map to transient and rate-limited flags."""
        client = _client(lambda _request: httpx.Response(status, headers=headers))

        with pytest.raises(GitHubAPIError) as excinfo:
            await client.get_repository("octo/weir")

        assert excinfo.value.status_code == status
        assert excinfo.value.transient is transient
        assert excinfo.value.rate_limited is rate_limited

    @pytest.mark.asyncio
    async def test_rate_limited_error_carries_reset(self) -> None:
        """Exhausted quota errors report when the window resets."""
        client = _client(
            lambda _request: httpx.Response(403, headers=_quota_headers(0))
        )

        with pytest.raises(GitHubAPIError) as excinfo:
            await client.get_repository("octo/weir")

        assert excinfo.value.reset_at == dt.datetime.fromtimestamp(
            RESET_EPOCH, tz=dt.UTC
        )

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self) -> None:
        """A request timeout becomes a retryable API error."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler)
        with pytest.raises(GitHubAPIError, match="timed out") as excinfo:
            await client.get_repository("octo/weir")
        assert excinfo.value.transient is True
        assert excinfo.value.status_code is None


class TestSearchTimeline:
    """Tests for timeline paging."""

    @pytest.mark.asyncio
    async def test_first_page_with_more_results(self) -> None:
        """A full page below the result cap yields the next page cursor."""
        captured: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured.update(request.url.params)
            items = [{"number": index} for index in range(50)]
            return httpx.Response(
                200,
                json={"total_count": 120, "items": items},
                headers={"etag": '"page1"'},
            )

        page = await _client(handler).search_timeline("octo/weir", since=SINCE, until=UNTIL)

        assert captured["q"] == (
            "repo:octo/weir updated:2024-07-01T00:00:00Z..2024-07-08T00:00:00Z"
        )
        assert captured["page"] == "1"
        assert captured["per_page"] == "50"
        assert len(page.items) == 50
        assert page.next_cursor == "2"
        assert page.total_count == 120
        assert page.etag == '"page1"'

    @pytest.mark.asyncio
    async def test_short_page_ends_paging(self) -> None:
        """A page with fewer than 50 items has no next cursor."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["page"] == "3"
            return httpx.Response(200, json={"total_count": 110, "items": [{}] * 10})

        page = await _client(handler).search_timeline(
            "octo/weir", since=SINCE, until=UNTIL, cursor="3"
        )

        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_search_cap_ends_paging(self) -> None:
        """Paging stops at the 1000 result search cap."""

        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"total_count": 5000, "items": [{}] * 50})

        page = await _client(handler).search_timeline(
            "octo/weir", since=SINCE, until=UNTIL, cursor="20"
        )

        assert page.next_cursor is None
        assert page.total_count == 1000

    @pytest.mark.asyncio
    async def test_not_modified(self) -> None:
        """A 304 answer to a conditional request is an empty not-modified page."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["if-none-match"] == '"page1"'
            return httpx.Response(304)

        page = await _client(handler).search_timeline(
            "octo/weir", since=SINCE, until=UNTIL, etag='"page1"'
        )

        assert page.not_modified is True
        assert page.items == []
        assert page.etag == '"page1"'

    @pytest.mark.asyncio
    async def test_invalid_cursor(self) -> None:
        """A non-numeric cursor is rejected before any request."""
        client = _client(lambda _request: httpx.Response(500))
        with pytest.raises(ValueError, match="cursor"):
            await client.search_timeline("octo/weir", since=SINCE, until=UNTIL, cursor="x")


class TestListCommitsAndRateLimit:
    """Tests for list_commits and get_rate_limit."""

    @pytest.mark.asyncio
    async def test_list_commits_params(self) -> None:
        """The window and author are passed as query parameters."""

        def handler(request: httpx.Request) -> httpx.Response:
            params = request.url.params
            assert request.url.path == "/repos/octo/weir/commits"
            assert params["since"] == "2024-07-01T00:00:00Z"
            assert params["until"] == "2024-07-08T00:00:00Z"
            assert params["author"] == "octocat"
            return httpx.Response(200, json=[{"sha": "abc"}, "junk"])

        page = await _client(handler).list_commits(
            "octo/weir", since=SINCE, until=UNTIL, author="octocat"
        )

        assert page.items == [{"sha": "abc"}]
        assert page.next_page is None

    @pytest.mark.asyncio
    async def test_list_commits_pages_until_short_page(self) -> None:
        """A full page points at the next; the short page ends the listing."""
        shas = [f"{n:040x}" for n in range(150)]
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            requested.append(request.url.params["page"])
            assert request.url.params["per_page"] == str(COMMITS_PAGE_SIZE)
            chunk = shas[(page - 1) * COMMITS_PAGE_SIZE : page * COMMITS_PAGE_SIZE]
            headers = (
                {"link": '<https://api.github.test/x?page=2>; rel="next"'}
                if page == 1
                else {}
            )
            return httpx.Response(
                200, json=[{"sha": sha} for sha in chunk], headers=headers
            )

        client = _client(handler, cache=ResponseCache())
        first = await client.list_commits("octo/weir", since=SINCE, until=UNTIL)
        assert first.next_page == 2
        second = await client.list_commits(
            "octo/weir", since=SINCE, until=UNTIL, page=first.next_page
        )

        assert second.next_page is None
        assert [c["sha"] for c in first.items + second.items] == shas
        assert requested == ["1", "2"]

    @pytest.mark.asyncio
    async def test_get_rate_limit(self) -> None:
        """The core resource is parsed from /rate_limit."""

        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "resources": {
                        "core": {"remaining": 42, "reset": RESET_EPOCH, "limit": 5000}
                    }
                },
            )

        info = await _client(handler).get_rate_limit()

        assert info.remaining == 42
        assert info.limit == 5000

    @pytest.mark.asyncio
    async def test_get_rate_limit_shape_error(self) -> None:
        """A payload without core.remaining is a shape error."""
        client = _client(lambda _request: httpx.Response(200, json={"resources": {}}))
        with pytest.raises(GitHubResponseShapeError):
            await client.get_rate_limit()
