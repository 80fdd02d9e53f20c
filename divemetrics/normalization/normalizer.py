"""Normalization stage: RawExtraction -> NormalizedMetrics.

The normalizer is a total, pure function: any text (including empty or
garbage) yields a NormalizedMetrics, never an exception. Fields the rules
cannot find stay null with confidence "absent".
"""

from __future__ import annotations

from dataclasses import dataclass

from divemetrics.normalization.rules import (
    DateOrder,
    RuleMatch,
    extract_date,
    extract_depth,
    extract_dive_time,
    extract_temperature,
)
from divemetrics.pipeline.models import (
    DATE_FIELD,
    DEPTH_FIELD,
    TEMPERATURE_FIELD,
    TIME_FIELD,
    ConfidenceTag,
    NormalizedMetrics,
    RawExtraction,
)


@dataclass(frozen=True)
class BatchContext:
    """Facts shared by images analyzed together (e.g. one folder import)."""

    date_order: DateOrder | None = None


def _confidence(match: RuleMatch | None) -> ConfidenceTag:
    return match.confidence if match is not None else ConfidenceTag.ABSENT


def normalize_text(
    text: str | bytes | None,
    source_image_id: str = "",
    context: BatchContext | None = None,
) -> NormalizedMetrics:
    """Apply the depth, time, temperature and date rules to free text."""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    text = text or ""
    preferred_order = context.date_order if context is not None else None

    depth = extract_depth(text)
    dive_time = extract_dive_time(text)
    temperature = extract_temperature(text)
    dive_date = extract_date(text, preferred_order)

    return NormalizedMetrics(
        source_image_id=source_image_id,
        max_depth_meters=depth.value if depth else None,
        dive_time_seconds=dive_time.value if dive_time else None,
        water_temperature_celsius=temperature.value if temperature else None,
        dive_date=dive_date.value if dive_date else None,
        field_confidence={
            DEPTH_FIELD: _confidence(depth),
            TIME_FIELD: _confidence(dive_time),
            TEMPERATURE_FIELD: _confidence(temperature),
            DATE_FIELD: _confidence(dive_date),
        },
    )


def normalize(raw: RawExtraction, context: BatchContext | None = None) -> NormalizedMetrics:
    """Return NormalizedMetrics for exactly one RawExtraction."""
    return normalize_text(raw.raw_text, source_image_id=raw.source_image_id, context=context)
