"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Return ``value`` as UTC, treating naive datetimes as already UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


def from_epoch_seconds(value: float) -> dt.datetime:
    """Convert a Unix timestamp in seconds into an aware UTC datetime."""
    return dt.datetime.fromtimestamp(value, tz=dt.UTC)


def parse_iso_datetime(value: str) -> dt.datetime:
    """Parse an ISO-8601 timestamp (accepting a ``Z`` suffix) into UTC."""
    normalised = value.strip()
    if normalised.endswith("Z"):
        normalised = f"{normalised[:-1]}+00:00"
    return ensure_utc(dt.datetime.fromisoformat(normalised))
