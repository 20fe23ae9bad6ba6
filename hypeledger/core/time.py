"""hypeledger.core.time

This module is the *only* time helper surface in the codebase.

Weekly periods are identified by the ISO date of their first day, so period keys
sort lexicographically in the same order as time.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Return an aware UTC datetime."""

    return datetime.now(tz=UTC)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_dt(value: str) -> datetime:
    """Parse an ISO-8601 datetime string into an aware UTC datetime.

    Accepts:
    - `Z` suffix
    - explicit offsets
    - naive timestamps (assumed UTC)

    Raises:
        ValueError: if parsing fails.
    """

    v = value.strip()
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"

    return ensure_utc(datetime.fromisoformat(v))


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def period_start(dt: datetime, *, weekday: int = 0) -> datetime:
    """Start (00:00 UTC) of the weekly period containing ``dt``.

    Args:
        dt: Any instant.
        weekday: First day of the period, Monday=0 .. Sunday=6.
    """

    d = ensure_utc(dt)
    offset = (d.weekday() - int(weekday)) % 7
    start = d - timedelta(days=offset)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def period_key(dt: datetime, *, weekday: int = 0) -> str:
    """Stable, sortable key for the weekly period containing ``dt``."""

    return period_start(dt, weekday=weekday).date().isoformat()
