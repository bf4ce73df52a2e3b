"""Wire formats for timestamps.

Client-supplied timestamps (due dates, deadlines) use the ISO 8601 subset
``YYYY-MM-DDTHH:MM:SSZ``. Server-set instants (created_at, updated_at, event
timestamps) carry microseconds so successive writes stay distinguishable.
All values are UTC.
"""

import re
from datetime import datetime, timedelta, timezone

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
INSTANT_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
EXPECTED_FORMAT = "ISO 8601 (YYYY-MM-DDTHH:MM:SSZ)"

_TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z")


def utcnow() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


def advance(previous: datetime) -> datetime:
    """Return now, or one microsecond past ``previous`` if the clock has not moved."""
    now = utcnow()
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def parse_timestamp(value: str) -> datetime:
    """Parse a client-supplied timestamp.

    Args:
        value: Timestamp text

    Returns:
        Timezone-aware UTC datetime

    Raises:
        ValueError: If value does not match TIMESTAMP_FORMAT exactly
    """
    if not isinstance(value, str):
        raise ValueError(f"expected string, got {type(value).__name__}")
    if not _TIMESTAMP_PATTERN.fullmatch(value):
        raise ValueError(f"{value!r} does not match {TIMESTAMP_FORMAT}")
    parsed = datetime.strptime(value, TIMESTAMP_FORMAT)
    return parsed.replace(tzinfo=timezone.utc)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value


def format_timestamp(value: datetime | None) -> str | None:
    """Render a client-facing timestamp in TIMESTAMP_FORMAT (None passes through)."""
    if value is None:
        return None
    return _to_utc(value).strftime(TIMESTAMP_FORMAT)


def format_instant(value: datetime) -> str:
    """Render a server-set instant in INSTANT_FORMAT."""
    return _to_utc(value).strftime(INSTANT_FORMAT)
