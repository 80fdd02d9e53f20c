"""Pipeline data models: raw extraction, normalized metrics and validated records.

RawExtraction (1) -> NormalizedMetrics (1) -> ValidatedDiveMetricRecord (1).
Every model is frozen. A correction never patches a record in place; it
produces a new record that points at the one it supersedes.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from divemetrics.normalization.units import format_dive_time

_FROZEN_CAMEL = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

DEPTH_FIELD = "maxDepthMeters"
TIME_FIELD = "diveTimeSeconds"
TEMPERATURE_FIELD = "waterTemperatureCelsius"
DATE_FIELD = "diveDate"

METRIC_FIELDS = (DEPTH_FIELD, TIME_FIELD, TEMPERATURE_FIELD, DATE_FIELD)


class ConfidenceTag(str, Enum):
    """Qualitative per-field confidence."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    ABSENT = "absent"


def _all_absent() -> dict[str, ConfidenceTag]:
    return {name: ConfidenceTag.ABSENT for name in METRIC_FIELDS}


class RawExtraction(BaseModel):
    """Unstructured output of one OCR/vision call."""

    model_config = _FROZEN_CAMEL

    source_image_id: str
    raw_text: str = ""
    engine_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    engine: str = ""
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: int = 0


class NormalizedMetrics(BaseModel):
    """Typed, unit-consistent dive measurements. Every field is independently nullable."""

    model_config = _FROZEN_CAMEL

    source_image_id: str = ""
    max_depth_meters: float | None = Field(default=None, ge=0.0)
    dive_time_seconds: int | None = Field(default=None, ge=0)
    water_temperature_celsius: float | None = None
    dive_date: date | None = None
    field_confidence: dict[str, ConfidenceTag] = Field(default_factory=_all_absent)


class ValidatedDiveMetricRecord(NormalizedMetrics):
    """Persistence-ready record.

    is_usable is true only when depth or time is present and unwarned.
    """

    record_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    supersedes: str | None = None
    validation_warnings: tuple[str, ...] = ()
    is_usable: bool = False

    @computed_field(alias="diveTimeFormatted")  # type: ignore[prop-decorator]
    @property
    def dive_time_formatted(self) -> str | None:
        return format_dive_time(self.dive_time_seconds)

    def metrics(self) -> NormalizedMetrics:
        """Return the normalized measurements this record was built from."""
        return NormalizedMetrics(
            source_image_id=self.source_image_id,
            max_depth_meters=self.max_depth_meters,
            dive_time_seconds=self.dive_time_seconds,
            water_temperature_celsius=self.water_temperature_celsius,
            dive_date=self.dive_date,
            field_confidence=dict(self.field_confidence),
        )
