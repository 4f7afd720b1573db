"""Error types for sync orchestration."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt


class BackfillRequestError(ValueError):
    """Raised when a backfill request cannot be turned into a job."""

    @classmethod
    def no_repositories(cls) -> BackfillRequestError:
        """Create an error for a request naming no repositories."""
        return cls("backfill requires at least one repository")

    @classmethod
    def too_many_repositories(cls, count: int, limit: int) -> BackfillRequestError:
        """Create an error for a request above the per-invocation limit."""
        return cls(f"backfill accepts at most {limit} repositories, got {count}")

    @classmethod
    def invalid_window(
        cls, since: dt.datetime, until: dt.datetime
    ) -> BackfillRequestError:
        """Create an error for a window that ends before it starts."""
        return cls(
            f"backfill window is empty: since={since.isoformat()} "
            f"until={until.isoformat()}"
        )
