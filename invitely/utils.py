"""Utility helpers for Invitely."""

from __future__ import annotations

from datetime import UTC, date, datetime, time


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def format_time_12h(value: time) -> str:
    """Render ``19:00`` as ``7 PM`` and ``21:30`` as ``9:30 PM``."""
    suffix = "AM" if value.hour < 12 else "PM"
    hour = value.hour % 12 or 12
    if value.minute:
        return f"{hour}:{value.minute:02d} {suffix}"
    return f"{hour} {suffix}"


def format_event_schedule(day: date, start: time, end: time | None = None) -> str:
    """Human readable schedule line such as ``Saturday, June 14, 2031 · 7 PM - 9:30 PM``."""
    label = f"{day:%A}, {day:%B} {day.day}, {day.year} · {format_time_12h(start)}"
    if end is not None:
        label = f"{label} - {format_time_12h(end)}"
    return label


def isoformat_or_none(value: date | time | datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()
