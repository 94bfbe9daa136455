"""Datetime helpers.

Kubernetes serializes timestamps as RFC 3339 with second precision and a
``Z`` suffix. These helpers keep every timestamp timezone-aware UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return current UTC time truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


def parse_time(value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 timestamp from a Kubernetes object.

    Returns None for missing or empty values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
