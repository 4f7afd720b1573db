"""Error types for canonical fact persistence."""

from __future__ import annotations

import enum


class CanonicalFactPersistReason(enum.StrEnum):
    """Machine-readable reasons for canonical persistence failures."""

    CONCURRENT_INSERT = "concurrent_insert"
    INVALID_EVENT = "invalid_event"


class CanonicalFactPersistError(Exception):
    """Raised when a canonical row cannot be stored or resolved."""

    def __init__(
        self,
        message: str,
        reason: CanonicalFactPersistReason | str | None = None,
    ) -> None:
        """Store a machine-readable reason for programmatic handling."""
        super().__init__(message)
        self.reason = reason

    @classmethod
    def concurrent_insert(cls, table: str, key: object) -> CanonicalFactPersistError:
        """Create an error for an insert conflict with no visible winner."""
        return cls(
            f"insert into {table} conflicted for {key!r} but no row is visible",
            reason=CanonicalFactPersistReason.CONCURRENT_INSERT,
        )

    @classmethod
    def invalid_event(cls, message: str) -> CanonicalFactPersistError:
        """Create an error for a canonical event missing required fields."""
        return cls(message, reason=CanonicalFactPersistReason.INVALID_EVENT)
