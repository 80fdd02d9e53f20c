"""Single-image pipeline: ingestion -> normalization -> validation.

Control flow is strictly sequential. The engine call inside ingestion is the
only external interaction; normalization and validation are pure.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from divemetrics.ingestion.adapter import OCRAdapter
from divemetrics.normalization.normalizer import BatchContext, normalize
from divemetrics.pipeline.models import RawExtraction, ValidatedDiveMetricRecord
from divemetrics.validation.validator import validate

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiveImageAnalyzer:
    """Composes the three stages for one image at a time."""

    def __init__(self, adapter: OCRAdapter, clock: Callable[[], datetime] | None = None) -> None:
        self._adapter = adapter
        self._clock = clock or _utcnow

    async def ingest(
        self,
        image: bytes | str,
        prompt_hint: str | None = None,
        source_image_id: str | None = None,
    ) -> RawExtraction:
        return await self._adapter.extract(image, prompt_hint, source_image_id)

    def finish(
        self, raw: RawExtraction, context: BatchContext | None = None
    ) -> ValidatedDiveMetricRecord:
        """Normalize and validate an extraction that has already been ingested."""
        record = validate(normalize(raw, context), now=self._clock())
        logger.info(
            "dive_record_validated",
            extra={
                "source_image_id": record.source_image_id,
                "record_id": record.record_id,
                "is_usable": record.is_usable,
                "warning_count": len(record.validation_warnings),
            },
        )
        return record

    async def analyze_image(
        self,
        image: bytes | str,
        prompt_hint: str | None = None,
        *,
        context: BatchContext | None = None,
        source_image_id: str | None = None,
    ) -> ValidatedDiveMetricRecord:
        """Run the full pipeline for one image.

        Raises:
            UnsupportedImageFormat: the payload is not an accepted image.
            EngineUnavailable: the backend failed or timed out.
        """
        raw = await self.ingest(image, prompt_hint, source_image_id)
        return self.finish(raw, context)
