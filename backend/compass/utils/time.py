from __future__ import annotations

from datetime import datetime, timedelta, timezone

__all__ = ["utc_now", "since"]


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def since(dt: datetime) -> timedelta:
    """Elapsed time from dt to now. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return utc_now() - dt
