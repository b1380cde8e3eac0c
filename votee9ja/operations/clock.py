# votee9ja/operations/clock.py

# Single source of "now" for eligibility windows, vote timestamps and audit
# entries. All comparisons happen on timezone-aware UTC datetimes.

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands DateTime columns back without tzinfo; those are stored as
    UTC, so a naive value is read as UTC rather than local time.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def canonical_timestamp(value: datetime) -> str:
    # Fixed-width form so a timestamp hashes the same before and after a
    # database round trip.
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_datetime(value):
    """Parse an ISO-8601 string (``Z`` suffix allowed) or pass a datetime through.

    Returns an aware UTC datetime, or None when ``value`` cannot be parsed.
    """
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None
