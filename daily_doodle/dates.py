"""UTC calendar day keys (yyyy-mm-dd)."""
import re
from datetime import date, datetime, timedelta, timezone

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_date_key(now: datetime | None = None) -> str:
    """Return the UTC date key for `now` (defaults to the current time)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%d")


def parse_date_key(date_key: str) -> date:
    """Parse a yyyy-mm-dd key, raising ValueError for anything else."""
    if not isinstance(date_key, str) or not _DATE_KEY_RE.match(date_key):
        raise ValueError(f"Invalid date key: {date_key!r}")
    return date.fromisoformat(date_key)


def is_valid_date_key(date_key) -> bool:
    try:
        parse_date_key(date_key)
    except ValueError:
        return False
    return True


def previous_date_key(date_key: str) -> str:
    """Return the calendar day before `date_key` (handles month/year rollover)."""
    return (parse_date_key(date_key) - timedelta(days=1)).isoformat()
