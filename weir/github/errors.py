"""GitHub API errors."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt

_HTTP_SERVER_ERROR_THRESHOLD = 500
_HTTP_FORBIDDEN = 403
_HTTP_TOO_MANY_REQUESTS = 429


class GitHubAPIError(RuntimeError):
    """Raised when a GitHub request fails.

    Attributes
    ----------
    status_code
        HTTP status, or ``None`` when no response was received.
    transient
        ``True`` when retrying later may succeed (rate limits, timeouts,
        server errors). Permanent failures need operator attention.
    reset_at
        When the rate limit window resets, if GitHub reported it.

    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        transient: bool = False,
        reset_at: dt.datetime | None = None,
    ) -> None:
        """Initialise with a message and classification details."""
        self.status_code = status_code
        self.transient = transient
        self.reset_at = reset_at
        super().__init__(message)

    @classmethod
    def http_error(
        cls,
        status_code: int,
        *,
        path: str,
        quota_exhausted: bool = False,
        reset_at: dt.datetime | None = None,
    ) -> GitHubAPIError:
        """Return an error for a non-2xx response to ``path``."""
        rate_limited = status_code == _HTTP_TOO_MANY_REQUESTS or (
            status_code == _HTTP_FORBIDDEN and quota_exhausted
        )
        transient = rate_limited or status_code >= _HTTP_SERVER_ERROR_THRESHOLD
        reason = "rate limit exceeded" if rate_limited else f"HTTP {status_code}"
        return cls(
            f"GitHub {reason} for {path}",
            status_code=status_code,
            transient=transient,
            reset_at=reset_at,
        )

    @classmethod
    def timeout(cls, path: str) -> GitHubAPIError:
        """Return a retryable error for a request that hit its deadline."""
        return cls(f"GitHub request timed out for {path}", transient=True)

    @classmethod
    def transport(cls, path: str, exc: BaseException) -> GitHubAPIError:
        """Return a retryable error for a connection-level failure."""
        return cls(f"GitHub request failed for {path}: {exc}", transient=True)

    @property
    def rate_limited(self) -> bool:
        """Return ``True`` when GitHub refused the call for quota reasons."""
        return self.transient and self.status_code in {
            _HTTP_FORBIDDEN,
            _HTTP_TOO_MANY_REQUESTS,
        }


class GitHubResponseShapeError(RuntimeError):
    """Raised when GitHub responses are missing expected fields."""

    @classmethod
    def missing(cls, field: str) -> GitHubResponseShapeError:
        """Return an error for a missing response field."""
        return cls(f"GitHub response missing expected field: {field}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def missing_token(cls) -> GitHubConfigError:
        """Return an error when no GitHub token is configured."""
        return cls("WEIR_GITHUB_TOKEN is required for GitHub API")

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")


class InstallationNotFoundError(LookupError):
    """Raised when no installation row matches a GitHub installation id."""

    def __init__(self, installation_id: int) -> None:
        """Record the missing installation id."""
        self.installation_id = installation_id
        super().__init__(f"GitHub installation {installation_id} is not registered")
