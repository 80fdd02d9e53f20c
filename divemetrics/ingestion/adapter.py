"""Ingestion stage: image payload -> RawExtraction."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from divemetrics.config.settings import ImageConfig, VisionConfig
from divemetrics.ingestion.engines import VisionEngine
from divemetrics.ingestion.errors import EngineUnavailable, UnsupportedImageFormat
from divemetrics.ingestion.images import prepare_image
from divemetrics.ingestion.prompts import build_instruction
from divemetrics.pipeline.models import RawExtraction
from divemetrics.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class OCRAdapter:
    """Wraps one vision/OCR engine behind a timeout and the image checks.

    The engine call is the only suspension point. Nothing here writes to a
    store.
    """

    def __init__(
        self,
        engine: VisionEngine,
        vision_config: VisionConfig | None = None,
        image_config: ImageConfig | None = None,
    ) -> None:
        self._engine = engine
        self._vision = vision_config or VisionConfig()
        self._images = image_config or ImageConfig()

    @property
    def engine_name(self) -> str:
        return self._engine.name

    async def extract(
        self,
        image: bytes | str,
        prompt_hint: str | None = None,
        source_image_id: str | None = None,
    ) -> RawExtraction:
        """Run one engine call for one image.

        Raises:
            UnsupportedImageFormat: the payload is not an accepted image.
            EngineUnavailable: the engine failed or exceeded the timeout.
        """
        try:
            prepared = prepare_image(image, self._images, source_image_id)
        except UnsupportedImageFormat as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.UNSUPPORTED_IMAGE,
                message=str(exc),
                suppressed=False,
                source_image_id=source_image_id,
            )
            raise

        instruction = build_instruction(self._vision.prompt_variant, prompt_hint)
        started = time.monotonic()
        try:
            output = await asyncio.wait_for(
                self._engine.extract(prepared, instruction),
                timeout=self._vision.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ENGINE_TIMEOUT,
                message=f"{self._engine.name} exceeded {self._vision.timeout_s:g}s",
                suppressed=False,
                source_image_id=prepared.source_image_id,
            )
            raise EngineUnavailable(
                f"{self._engine.name} did not answer within {self._vision.timeout_s:g}s"
            ) from exc
        except EngineUnavailable as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ENGINE_UNAVAILABLE,
                message=str(exc),
                suppressed=False,
                source_image_id=prepared.source_image_id,
                details={"engine": self._engine.name},
            )
            raise
        latency_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "engine_extraction_complete",
            extra={
                "engine": self._engine.name,
                "source_image_id": prepared.source_image_id,
                "latency_ms": latency_ms,
                "text_length": len(output.text),
            },
        )
        return RawExtraction(
            source_image_id=prepared.source_image_id,
            raw_text=output.text,
            engine_confidence=output.confidence,
            engine=self._engine.name,
            extracted_at=datetime.now(timezone.utc),
            latency_ms=latency_ms,
        )
