from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def hours_ago_iso(hours: float, *, now: datetime | None = None) -> str:
    return ((now or utc_now()) - timedelta(hours=hours)).isoformat()
