"""Pattern rules that pull dive metrics out of noisy OCR/vision text.

Each extractor is total over all strings: it returns a RuleMatch or None and
never raises. Dive computers disagree on layout and units, so every rule
scans for all candidates first and then decides which one to trust.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Iterable

from divemetrics.normalization.units import (
    clock_to_seconds,
    fahrenheit_to_celsius,
    feet_to_meters,
)
from divemetrics.pipeline.models import ConfidenceTag


class DateOrder(str, Enum):
    """Component order for slash dates whose day and month are both <= 12."""

    MDY = "MDY"
    DMY = "DMY"


@dataclass(frozen=True)
class RuleMatch:
    """Winning candidate for one field."""

    value: Any
    confidence: ConfidenceTag


# --- Depth ---

_DEPTH_RX = re.compile(
    r"(?<![\w.,])(?P<value>\d{1,4}(?:[.,]\d{1,2})?)\s?"
    r"(?P<unit>meters|metres|meter|metre|feet|foot|ft|m)\b",
    re.IGNORECASE,
)
_DEPTH_KEYWORD_RX = re.compile(r"max|depth|deepest", re.IGNORECASE)
_KEYWORD_WINDOW = 30


def _to_float(token: str) -> float:
    return float(token.replace(",", "."))


def _line_prefix(text: str, start: int) -> str:
    """Text on the same line before `start`, capped to the keyword window."""
    line_start = text.rfind("\n", 0, start) + 1
    return text[max(line_start, start - _KEYWORD_WINDOW):start]


def extract_depth(text: str) -> RuleMatch | None:
    candidates: list[tuple[float, bool]] = []
    for match in _DEPTH_RX.finditer(text):
        value = _to_float(match.group("value"))
        if match.group("unit").lower() in {"ft", "feet", "foot"}:
            value = feet_to_meters(value)
        has_keyword = bool(_DEPTH_KEYWORD_RX.search(_line_prefix(text, match.start())))
        candidates.append((value, has_keyword))

    if not candidates:
        return None

    preferred = [value for value, has_keyword in candidates if has_keyword]
    if preferred:
        confidence = ConfidenceTag.HIGH if len(set(preferred)) == 1 else ConfidenceTag.MEDIUM
        return RuleMatch(preferred[0], confidence)

    values = [value for value, _ in candidates]
    if len(set(values)) == 1:
        return RuleMatch(values[0], ConfidenceTag.HIGH)
    # Several bare depths and no label: the deepest one is the max-depth reading.
    return RuleMatch(max(values), ConfidenceTag.MEDIUM)


# --- Dive time ---

_TIME_RX = re.compile(
    r"(?<![\d:'’′])(?:"
    r"(?P<h>\d{1,2}):(?P<hm>\d{2}):(?P<hs>\d{2})"
    r"|(?P<m>\d{1,3}):(?P<s>\d{2})"
    r"|(?P<pm>\d{1,3})['’′]\s?(?P<ps>\d{2})(?:\"|''|”|″)"
    r")(?![\d:])"
)


def _time_candidate_seconds(match: re.Match[str]) -> int | None:
    if match.group("h") is not None:
        return clock_to_seconds(int(match.group("h")), int(match.group("hm")), int(match.group("hs")))
    if match.group("m") is not None:
        return clock_to_seconds(0, int(match.group("m")), int(match.group("s")))
    return clock_to_seconds(0, int(match.group("pm")), int(match.group("ps")))


def extract_dive_time(text: str) -> RuleMatch | None:
    well_formed = [
        seconds
        for seconds in (_time_candidate_seconds(m) for m in _TIME_RX.finditer(text))
        if seconds is not None
    ]
    if not well_formed:
        return None
    confidence = ConfidenceTag.HIGH if len(set(well_formed)) == 1 else ConfidenceTag.MEDIUM
    return RuleMatch(well_formed[0], confidence)


# --- Water temperature ---

_TEMP_RX = re.compile(
    r"(?<![\w.,])(?P<value>-?\d{1,3}(?:[.,]\d)?)\s?"
    r"(?:[°º]\s?(?P<short>[CF])\b|(?:[°º]\s?)?(?P<long>celsius|fahrenheit)\b)",
    re.IGNORECASE,
)
_BARE_DEGREE_RX = re.compile(r"(?<![\w.,])(?P<value>-?\d{1,3}(?:[.,]\d)?)\s?[°º](?!\s?[a-z])", re.IGNORECASE)
_TEMP_KEYWORD_RX = re.compile(r"temp|water", re.IGNORECASE)


def extract_temperature(text: str) -> RuleMatch | None:
    values: list[float] = []
    for match in _TEMP_RX.finditer(text):
        value = _to_float(match.group("value"))
        unit = (match.group("short") or match.group("long")).lower()
        if unit.startswith("f"):
            value = fahrenheit_to_celsius(value)
        values.append(value)

    if values:
        confidence = ConfidenceTag.HIGH if len(set(values)) == 1 else ConfidenceTag.MEDIUM
        return RuleMatch(values[0], confidence)

    # A labeled reading with a bare degree sign is assumed to be Celsius.
    for match in _BARE_DEGREE_RX.finditer(text):
        if _TEMP_KEYWORD_RX.search(_line_prefix(text, match.start())):
            return RuleMatch(_to_float(match.group("value")), ConfidenceTag.MEDIUM)
    return None


# --- Dive date ---

_ISO_DATE_RX = re.compile(r"(?<![\d/.-])(?P<y>\d{4})[-/](?P<m>\d{1,2})[-/](?P<d>\d{1,2})(?![\d/-])")
_DOTTED_DATE_RX = re.compile(r"(?<![\d.])(?P<d>\d{1,2})\.(?P<m>\d{1,2})\.(?P<y>\d{4})(?![\d.])")
_SLASH_DATE_RX = re.compile(r"(?<![\d/])(?P<a>\d{1,2})/(?P<b>\d{1,2})/(?P<y>\d{4}|\d{2})(?![\d/])")


@dataclass(frozen=True)
class _DateCandidate:
    position: int
    value: date
    ambiguous: bool


def _expand_year(token: str) -> int:
    year = int(token)
    if len(token) == 2:
        return 2000 + year if year < 70 else 1900 + year
    return year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _slash_order(first: int, second: int) -> DateOrder | None:
    """Order implied by the numbers alone, or None when both fit either way."""
    if first > 12 and second <= 12:
        return DateOrder.DMY
    if second > 12 and first <= 12:
        return DateOrder.MDY
    return None


def _date_candidates(text: str, preferred_order: DateOrder | None) -> list[_DateCandidate]:
    found: list[_DateCandidate] = []

    for match in _ISO_DATE_RX.finditer(text):
        value = _safe_date(int(match.group("y")), int(match.group("m")), int(match.group("d")))
        if value is not None:
            found.append(_DateCandidate(match.start(), value, ambiguous=False))

    for match in _DOTTED_DATE_RX.finditer(text):
        value = _safe_date(int(match.group("y")), int(match.group("m")), int(match.group("d")))
        if value is not None:
            found.append(_DateCandidate(match.start(), value, ambiguous=False))

    for match in _SLASH_DATE_RX.finditer(text):
        first, second = int(match.group("a")), int(match.group("b"))
        year = _expand_year(match.group("y"))
        implied = _slash_order(first, second)
        ambiguous = implied is None and first != second
        order = implied or preferred_order or DateOrder.MDY
        if order is DateOrder.MDY:
            value = _safe_date(year, first, second)
        else:
            value = _safe_date(year, second, first)
        if value is not None:
            found.append(_DateCandidate(match.start(), value, ambiguous=ambiguous))

    found.sort(key=lambda candidate: candidate.position)
    return found


def extract_date(text: str, preferred_order: DateOrder | None = None) -> RuleMatch | None:
    candidates = _date_candidates(text, preferred_order)
    if not candidates:
        return None
    chosen = candidates[0]
    if chosen.ambiguous or len({c.value for c in candidates}) > 1:
        return RuleMatch(chosen.value, ConfidenceTag.MEDIUM)
    return RuleMatch(chosen.value, ConfidenceTag.HIGH)


def observed_date_orders(text: str) -> list[DateOrder]:
    """Orders revealed by dates whose layout is not in doubt."""
    orders: list[DateOrder] = []
    for match in _SLASH_DATE_RX.finditer(text):
        implied = _slash_order(int(match.group("a")), int(match.group("b")))
        if implied is not None:
            orders.append(implied)
    for match in _DOTTED_DATE_RX.finditer(text):
        if _safe_date(int(match.group("y")), int(match.group("m")), int(match.group("d"))):
            orders.append(DateOrder.DMY)
    return orders


def infer_date_order(texts: Iterable[str]) -> DateOrder | None:
    """Majority date order across a batch; None when there is no evidence or a tie."""
    votes: Counter[DateOrder] = Counter()
    for text in texts:
        votes.update(observed_date_orders(text or ""))
    if not votes:
        return None
    ranked = votes.most_common()
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return None
    return ranked[0][0]
