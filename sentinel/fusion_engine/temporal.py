"""Sentinel — Temporal Mapper.

Single source of temporal truth: maps the 0–100 scrubber position onto the
window [TEMPORAL_START_UTC, now]. "now" is read at call time unless supplied,
so the window keeps growing for the life of the process.
"""

from datetime import date, datetime, timezone
from typing import Optional

TEMPORAL_START_UTC = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def date_from_slider_position(
    position: float,
    now: Optional[datetime] = None,
    start: datetime = TEMPORAL_START_UTC,
) -> datetime:
    """start + position/100 * (now - start), with position clamped to [0, 100]."""
    clamped = max(0.0, min(100.0, float(position)))
    end = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return start + (end - start) * (clamped / 100.0)


def iso_day(value: datetime) -> str:
    """Truncate to the UTC calendar day as YYYY-MM-DD."""
    return _as_utc(value).strftime("%Y-%m-%d")


def temporal_window(position: float = 100.0, now: Optional[datetime] = None) -> dict:
    """Search window for a scrubber position: fixed start, selected end."""
    return {
        "startDate": iso_day(TEMPORAL_START_UTC),
        "endDate": iso_day(date_from_slider_position(position, now)),
    }


def parse_instant(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 instant or calendar date into an aware UTC datetime.

    Returns None for anything unparseable; date-only and naive values are
    taken as UTC.
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        day = date.fromisoformat(text[:10])
    except ValueError:
        return None
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
