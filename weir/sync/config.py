"""Configuration for backfill runs."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt

from weir.common.env import parse_positive_int
from weir.github.ratelimit import MIN_BACKFILL_BUDGET

MAX_REPOS_PER_INVOCATION = 10
_DEFAULT_LOOKBACK_DAYS = 30


@dc.dataclass(frozen=True, slots=True)
class BackfillConfig:
    """Limits applied to every backfill job.

    Attributes
    ----------
    max_repos
        Repositories accepted by one :meth:`BackfillRunner.start` call.
    min_budget
        Remaining quota at or below which a run pauses until the reset.
    lookback_days
        Window start used when the caller supplies no ``since``.

    """

    max_repos: int = MAX_REPOS_PER_INVOCATION
    min_budget: int = MIN_BACKFILL_BUDGET
    lookback_days: int = _DEFAULT_LOOKBACK_DAYS

    @property
    def lookback(self) -> dt.timedelta:
        """Return the default window length."""
        return dt.timedelta(days=self.lookback_days)

    @classmethod
    def from_env(cls) -> BackfillConfig:
        """Build configuration from ``WEIR_BACKFILL_*`` variables."""
        return cls(
            max_repos=parse_positive_int(
                "WEIR_BACKFILL_MAX_REPOS", MAX_REPOS_PER_INVOCATION
            ),
            min_budget=parse_positive_int(
                "WEIR_BACKFILL_MIN_BUDGET", MIN_BACKFILL_BUDGET
            ),
            lookback_days=parse_positive_int(
                "WEIR_BACKFILL_LOOKBACK_DAYS", _DEFAULT_LOOKBACK_DAYS
            ),
        )
