from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone


def now_ts() -> int:
    return int(time.time())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def utc_now_iso() -> str:
    return iso(utc_now())


def days_from(start: datetime, days: float) -> datetime:
    return start + timedelta(days=days)
