"""Datetime helpers for the API layer.

All timestamps are stored and returned as timezone-aware UTC. Leaderboard
windows are calendar windows in UTC (day, ISO week starting Monday, month).
"""

from datetime import date, datetime, timedelta, timezone

# Classic Twitter timestamp, e.g. "Tue Dec 10 07:00:30 +0000 2024".
TWITTER_CLASSIC_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def now_utc() -> datetime:
    """Get the current time in UTC, timezone-aware."""
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """Return the current date in UTC timezone."""
    return now_utc().date()


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (as returned by SQLite) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def date_to_utc_datetime(day: date) -> datetime:
    """Convert a date to a timezone-aware UTC datetime at midnight."""
    return datetime.combine(day, datetime.min.time()).replace(tzinfo=timezone.utc)


def parse_source_timestamp(value: str | None) -> datetime | None:
    """Parse a mention timestamp in either ISO 8601 or classic Twitter form.

    Returns None when the value is missing or matches neither format.
    """
    if not value:
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.strptime(text, TWITTER_CLASSIC_FORMAT)
        except ValueError:
            return None
    return ensure_utc(parsed)


def to_unix_seconds(value: datetime) -> int:
    return int(ensure_utc(value).timestamp())


def day_window(now: datetime) -> tuple[datetime, datetime]:
    start = date_to_utc_datetime(ensure_utc(now).date())
    return start, start + timedelta(days=1)


def week_window(now: datetime) -> tuple[datetime, datetime]:
    today = ensure_utc(now).date()
    start = date_to_utc_datetime(today - timedelta(days=today.weekday()))
    return start, start + timedelta(days=7)


def month_window(now: datetime) -> tuple[datetime, datetime]:
    today = ensure_utc(now).date()
    start = date_to_utc_datetime(today.replace(day=1))
    if today.month == 12:
        end_day = date(today.year + 1, 1, 1)
    else:
        end_day = date(today.year, today.month + 1, 1)
    return start, date_to_utc_datetime(end_day)
