"""Webhook secret configuration."""

from __future__ import annotations

import dataclasses as dc

from weir.common.env import read_str

_CURRENT_ENV = "WEIR_GITHUB_WEBHOOK_SECRET"
_PREVIOUS_ENV = "WEIR_GITHUB_WEBHOOK_SECRET_PREVIOUS"


@dc.dataclass(frozen=True, slots=True)
class WebhookSecrets:
    """Current and (during rotation) previous webhook signing secrets.

    Attributes
    ----------
    current
        Active secret; ``None`` when the deployment has not configured one,
        in which case every delivery is refused with a server error.
    previous
        Secret being rotated out. Remove it once GitHub signs with the new
        secret only.

    """

    current: str | None = None
    previous: str | None = None

    @property
    def configured(self) -> bool:
        """Return ``True`` when a current secret is available."""
        return self.current is not None

    @classmethod
    def from_env(cls) -> WebhookSecrets:
        """Build secrets from ``WEIR_GITHUB_WEBHOOK_SECRET*`` variables."""
        return cls(
            current=read_str(_CURRENT_ENV),
            previous=read_str(_PREVIOUS_ENV),
        )
