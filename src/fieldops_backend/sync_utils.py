from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fieldops_backend.config import settings
from fieldops_backend.models import as_utc, utc_now

_TICK = timedelta(microseconds=1)


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def clamp_client_updated_at(value: datetime, *, server_now: datetime | None = None) -> datetime:
    """Bound clientUpdatedAt to at most `skew` ahead of server time.

    A clock-skewed device can otherwise claim a far-future timestamp and win
    every conflict until real time catches up.
    """
    incoming = as_utc(value)
    assert incoming is not None
    now = server_now or utc_now()
    max_ahead = now + timedelta(seconds=settings.sync_max_client_clock_skew_seconds)
    if incoming > max_ahead:
        return max_ahead
    return incoming


def next_updated_at(previous: datetime | None, *, server_now: datetime | None = None) -> datetime:
    """Server-authoritative updatedAt for a write: never equal to or behind the old value."""
    now = server_now or utc_now()
    prev = as_utc(previous)
    if prev is not None and now <= prev:
        return prev + _TICK
    return now


def isoformat(value: datetime | None) -> str | None:
    v = as_utc(value)
    return v.isoformat() if v is not None else None
