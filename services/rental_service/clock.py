from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol


class ClockSource(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant until moved explicitly."""

    def __init__(self, instant: datetime):
        self.instant = as_utc(instant)

    def now(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = as_utc(instant)

    def advance(self, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant


def as_utc(value: datetime, local_tz: Optional[tzinfo] = None) -> datetime:
    # Naive values are wall-clock times in local_tz (UTC when not given)
    if value.tzinfo is None:
        value = value.replace(tzinfo=local_tz or timezone.utc)
    return value.astimezone(timezone.utc)


def business_date(value: datetime, business_tz: tzinfo) -> date:
    return as_utc(value, business_tz).astimezone(business_tz).date()
