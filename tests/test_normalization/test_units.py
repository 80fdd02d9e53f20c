"""Tests for unit conversions and dive time formatting."""

from divemetrics.normalization.units import (
    clock_to_seconds,
    fahrenheit_to_celsius,
    feet_to_meters,
    format_dive_time,
)


def test_feet_to_meters():
    assert feet_to_meters(328) == 99.97


def test_fahrenheit_to_celsius():
    assert fahrenheit_to_celsius(32) == 0.0
    assert fahrenheit_to_celsius(80) == 26.7


def test_clock_to_seconds_rejects_out_of_range():
    assert clock_to_seconds(0, 60, 0) is None
    assert clock_to_seconds(0, 1, 60) is None
    assert clock_to_seconds(1, 2, 3) == 3723


def test_format_dive_time():
    assert format_dive_time(173) == "2:53"
    assert format_dive_time(5) == "0:05"
    assert format_dive_time(3723) == "62:03"
    assert format_dive_time(None) is None
