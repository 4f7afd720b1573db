"""Error types for the webhook envelope store."""

from __future__ import annotations


class TimezoneAwareRequiredError(ValueError):
    """Raised when datetime inputs lack timezone information."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error for a naive value bound to a UTC column."""
        return cls("timestamp column value")


class EnvelopePersistError(RuntimeError):
    """Raised when an envelope insert conflicts but no row can be re-read."""

    def __init__(self, delivery_id: str) -> None:
        """Record the delivery whose insert could not be resolved."""
        self.delivery_id = delivery_id
        super().__init__(
            f"expected existing webhook envelope {delivery_id!r} after rollback"
        )
