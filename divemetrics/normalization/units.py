"""Unit conversions and dive-time formatting."""

from __future__ import annotations

FEET_TO_METERS = 0.3048


def feet_to_meters(feet: float) -> float:
    return round(feet * FEET_TO_METERS, 2)


def fahrenheit_to_celsius(fahrenheit: float) -> float:
    return round((fahrenheit - 32) * 5 / 9, 1)


def clock_to_seconds(hours: int, minutes: int, seconds: int) -> int | None:
    """Convert clock components to total seconds.

    Returns None when minutes or seconds are not valid clock values (>= 60).
    """
    if minutes >= 60 or seconds >= 60:
        return None
    return hours * 3600 + minutes * 60 + seconds


def format_dive_time(total_seconds: int | None) -> str | None:
    """Render seconds for display as M:SS (minutes are not wrapped into hours).

    >>> format_dive_time(173)
    '2:53'
    """
    if total_seconds is None:
        return None
    minutes, seconds = divmod(int(total_seconds), 60)
    return f"{minutes}:{seconds:02d}"
