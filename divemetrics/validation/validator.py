"""Validation stage: NormalizedMetrics -> ValidatedDiveMetricRecord.

Bounds checks flag values, they never drop them: an implausible reading is
kept on the record with a warning so a human can correct it. Validation never
raises.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from divemetrics.pipeline.models import (
    DATE_FIELD,
    DEPTH_FIELD,
    METRIC_FIELDS,
    TEMPERATURE_FIELD,
    TIME_FIELD,
    ConfidenceTag,
    NormalizedMetrics,
    ValidatedDiveMetricRecord,
)

# Sanity ceiling well beyond any human breath-hold record.
MAX_DEPTH_METERS = 400.0
MAX_DIVE_TIME_SECONDS = 1800
MIN_WATER_TEMPERATURE_C = -2.0
MAX_WATER_TEMPERATURE_C = 40.0


def _check_depth(value: float | None) -> str | None:
    if value is None:
        return "depth field missing"
    if not 0 < value <= MAX_DEPTH_METERS:
        return f"depth value implausible: {value:g} m outside (0, {MAX_DEPTH_METERS:g}]"
    return None


def _check_dive_time(value: int | None) -> str | None:
    if value is None:
        return "time field missing"
    if not 0 < value <= MAX_DIVE_TIME_SECONDS:
        return f"time value implausible: {value} s outside (0, {MAX_DIVE_TIME_SECONDS}]"
    return None


def _check_temperature(value: float | None) -> str | None:
    if value is None:
        return None
    if not MIN_WATER_TEMPERATURE_C <= value <= MAX_WATER_TEMPERATURE_C:
        return (
            f"temperature value implausible: {value:g} °C outside "
            f"[{MIN_WATER_TEMPERATURE_C:g}, {MAX_WATER_TEMPERATURE_C:g}]"
        )
    return None


def _check_date(value: date | None, today: date) -> str | None:
    if value is None:
        return None
    if value > today:
        return f"date value implausible: {value.isoformat()} is in the future"
    return None


def validate(
    metrics: NormalizedMetrics,
    *,
    now: datetime | None = None,
    supersedes: str | None = None,
) -> ValidatedDiveMetricRecord:
    """Apply the bounds rules and assemble a new record.

    Args:
        metrics: Output of the normalization stage.
        now: Processing time used for the future-date rule (defaults to UTC now).
        supersedes: record_id of an earlier record this one corrects.
    """
    processed_at = now or datetime.now(timezone.utc)

    depth_warning = _check_depth(metrics.max_depth_meters)
    time_warning = _check_dive_time(metrics.dive_time_seconds)
    warnings = [
        w
        for w in (
            depth_warning,
            time_warning,
            _check_temperature(metrics.water_temperature_celsius),
            _check_date(metrics.dive_date, processed_at.date()),
        )
        if w is not None
    ]

    is_usable = (metrics.max_depth_meters is not None and depth_warning is None) or (
        metrics.dive_time_seconds is not None and time_warning is None
    )

    return ValidatedDiveMetricRecord(
        source_image_id=metrics.source_image_id,
        max_depth_meters=metrics.max_depth_meters,
        dive_time_seconds=metrics.dive_time_seconds,
        water_temperature_celsius=metrics.water_temperature_celsius,
        dive_date=metrics.dive_date,
        field_confidence=dict(metrics.field_confidence),
        validation_warnings=tuple(warnings),
        is_usable=is_usable,
        created_at=processed_at,
        supersedes=supersedes,
    )


_CORRECTABLE = {
    "max_depth_meters": DEPTH_FIELD,
    "dive_time_seconds": TIME_FIELD,
    "water_temperature_celsius": TEMPERATURE_FIELD,
    "dive_date": DATE_FIELD,
}


def correct_record(
    record: ValidatedDiveMetricRecord,
    *,
    now: datetime | None = None,
    **changes: Any,
) -> ValidatedDiveMetricRecord:
    """Produce a corrected copy of `record` under a new identity.

    Values supplied by a person are tagged high confidence; the original
    record is left untouched and referenced through `supersedes`.
    """
    unknown = set(changes) - set(_CORRECTABLE)
    if unknown:
        raise ValueError(f"Cannot correct fields: {sorted(unknown)}")

    base = record.metrics().model_dump()
    confidence = dict(record.field_confidence)
    for attr, value in changes.items():
        base[attr] = value
        confidence[_CORRECTABLE[attr]] = (
            ConfidenceTag.HIGH if value is not None else ConfidenceTag.ABSENT
        )
    base["field_confidence"] = {name: confidence[name] for name in METRIC_FIELDS}

    return validate(NormalizedMetrics(**base), now=now, supersedes=record.record_id)
