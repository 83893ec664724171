"""Timestamp parsing utilities for venue deadlines and daily boundaries."""

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo


def parse_deadline(value: str | None) -> datetime | None:
    """Parse a venue end-date string into an aware UTC datetime.

    Accept full ISO 8601 timestamps (``2026-03-01T12:00:00Z``), timestamps
    with offsets, and bare dates (``2026-03-01``, read as midnight UTC).

    Args:
        value: Date string from the venue, or ``None``.

    Returns:
        Aware UTC datetime, or ``None`` when the value is empty or cannot
        be parsed.

    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def trading_day(moment: datetime, timezone: str) -> date:
    """Return the calendar day of ``moment`` in the operating timezone.

    Args:
        moment: Aware datetime.
        timezone: IANA timezone name (e.g. ``"UTC"``, ``"America/New_York"``).

    Returns:
        The local calendar date used for daily spend accounting.

    """
    return moment.astimezone(ZoneInfo(timezone)).date()


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)
