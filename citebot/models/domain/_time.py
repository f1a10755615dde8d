from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Timezone-aware wall clock in the server's local zone."""
    return datetime.now().astimezone()


def start_of_local_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def next_local_midnight(moment: datetime) -> datetime:
    return start_of_local_day(moment) + timedelta(days=1)
