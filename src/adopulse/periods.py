from __future__ import annotations

import datetime as dt
import math

from adopulse.models import Period

RANGES = ("7", "14", "mtd")
DEFAULT_RANGE = "14"


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def parse_range(value: str | None) -> str:
    if value in RANGES:
        return value
    return DEFAULT_RANGE


def lookback(days: int, now: dt.datetime | None = None) -> Period:
    """
    `days` back from `now`. A negative day count is kept as-is so the report
    builders can reject it as invalid input.
    """
    end = now or utc_now()
    start = end - dt.timedelta(days=max(days, 0))
    return Period(days=days, start=start, end=end, label=f"last {days} days")


def resolve_range(range_: str, now: dt.datetime | None = None) -> Period:
    end = now or utc_now()
    if range_ == "mtd":
        start = end.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        days = math.ceil((end - start).total_seconds() / 86_400)
        return Period(days=max(days, 1), start=start, end=end, label="month to date")
    return lookback(int(parse_range(range_)), now=end)


def count_business_days(start: dt.datetime, end: dt.datetime) -> int:
    # Counts Mon-Fri calendar steps from `start` while strictly before `end`.
    count = 0
    d = start
    while d < end:
        if d.weekday() < 5:
            count += 1
        d += dt.timedelta(days=1)
    return count
