"""Single time source: naive UTC, second precision, calendar-day expiry."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def utc_today() -> date:
    return utc_now().date()
