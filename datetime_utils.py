from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive values coming back from SQLite are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def seconds_from_now(seconds: float) -> datetime:
    return utc_now() + timedelta(seconds=max(seconds, 0.0))


def parse_iso_utc(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string into an aware UTC datetime, ``None`` if unreadable."""

    if not s:
        return None
    value = s.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ensure_utc(dt)


__all__ = ["UTC", "ensure_utc", "parse_iso_utc", "seconds_from_now", "utc_now"]
