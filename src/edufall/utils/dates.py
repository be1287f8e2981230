"""UTC calendar helpers for daily and weekly resets."""
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: Optional[datetime]) -> datetime:
    if moment is None:
        return utc_now()
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def date_string(moment: Optional[datetime] = None) -> str:
    """YYYY-MM-DD for the UTC day."""
    return _as_utc(moment).date().isoformat()


def week_start(moment: Optional[datetime] = None) -> date:
    """The most recent Sunday (UTC), the first day of a leaderboard week."""
    day = _as_utc(moment).date()
    # Monday is 0, Sunday is 6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def week_string(moment: Optional[datetime] = None) -> str:
    return f"week-of-{week_start(moment).isoformat()}"


def next_daily_reset(moment: Optional[datetime] = None) -> datetime:
    """Next UTC midnight."""
    current = _as_utc(moment)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


def next_weekly_reset(moment: Optional[datetime] = None) -> datetime:
    """Next UTC Sunday midnight, always strictly in the future."""
    current = _as_utc(moment)
    start = datetime.combine(week_start(current), datetime.min.time(), tzinfo=timezone.utc)
    return start + timedelta(days=7)


def yesterday_string(moment: Optional[datetime] = None) -> str:
    return date_string(_as_utc(moment) - timedelta(days=1))


def timestamp_ms(moment: Optional[datetime] = None) -> int:
    return int(_as_utc(moment).timestamp() * 1000)
