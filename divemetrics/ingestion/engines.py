"""OCR / vision backends.

Every backend is reduced to one contract: prepared image + instruction in,
text out. Vision models answer with JSON; render_engine_response flattens
that JSON back into labeled text lines so the normalizer treats every backend
the same way.

Clients are constructed explicitly (or injected) per engine instance; nothing
here holds a process-wide SDK singleton.
"""

from __future__ import annotations

import asyncio
import base64
import io
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import pytesseract
from openai import AsyncOpenAI, OpenAIError
from PIL import Image

from divemetrics.config.settings import VisionConfig
from divemetrics.ingestion.errors import EngineUnavailable
from divemetrics.ingestion.images import PreparedImage
from divemetrics.normalization.units import format_dive_time
from divemetrics.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineOutput:
    text: str
    confidence: float | None = None


class VisionEngine(Protocol):
    name: str

    async def extract(self, image: PreparedImage, instruction: str) -> EngineOutput: ...


# --- Response rendering ---

_JSON_FENCE_RX = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)
_JSON_OBJECT_RX = re.compile(r"\{[\s\S]*\}")
_NOT_VISIBLE = {"", "null", "none", "n/a", "not_visible", "not visible", "unreadable"}
_CONFIDENCE_WORDS = {"high": 0.9, "medium": 0.6, "low": 0.3}


def _load_json_object(content: str) -> dict[str, Any] | None:
    candidates = [content]
    fence = _JSON_FENCE_RX.search(content)
    if fence:
        candidates.append(fence.group(1))
    embedded = _JSON_OBJECT_RX.search(content)
    if embedded:
        candidates.append(embedded.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, str) and value.strip().lower() in _NOT_VISIBLE:
            continue
        return value
    return None


def _with_unit(value: Any, default_unit: str) -> str:
    """Render a reading, adding the default unit when the model gave a bare number."""
    if isinstance(value, (int, float)):
        return f"{value:g}{default_unit}"
    text = str(value).strip()
    if re.fullmatch(r"-?\d+(?:[.,]\d+)?", text):
        return f"{text}{default_unit}"
    return text


def _parse_confidence(value: Any) -> float | None:
    if isinstance(value, str):
        return _CONFIDENCE_WORDS.get(value.strip().lower())
    if isinstance(value, (int, float)) and not isinstance(value, bool) and 0.0 <= value <= 1.0:
        return float(value)
    return None


def render_engine_response(content: str) -> EngineOutput:
    """Turn a backend answer into normalizer-ready text.

    JSON answers (bare, fenced, or embedded in prose) are flattened into
    "Max Depth: 45.2m" style lines. Anything else passes through verbatim.
    """
    data = _load_json_object(content)
    if data is None:
        return EngineOutput(text=content.strip())

    readings = data.get("extractedData") or data.get("extracted_data") or data
    if not isinstance(readings, dict):
        readings = {}

    lines: list[str] = []
    depth = _first(readings, "maxDepth", "max_depth")
    if depth is not None:
        lines.append(f"Max Depth: {_with_unit(depth, 'm')}")

    dive_time = _first(readings, "diveTime", "dive_time")
    if dive_time is None:
        seconds = _first(readings, "diveTimeSeconds", "dive_time_seconds")
        if isinstance(seconds, (int, float)) and seconds >= 0:
            dive_time = format_dive_time(int(seconds))
    if dive_time is not None:
        lines.append(f"Dive Time: {dive_time}")

    temperature = _first(readings, "temperature", "water_temperature", "waterTemperature")
    if temperature is not None:
        lines.append(f"Temp: {_with_unit(temperature, '°C')}")

    dive_date = _first(readings, "date", "diveDate", "dive_date")
    if dive_date is not None:
        lines.append(f"Date: {dive_date}")

    confidence = _parse_confidence(data.get("confidence", data.get("confidence_score")))
    return EngineOutput(text="\n".join(lines), confidence=confidence)


# --- Backends ---


class GeminiVisionEngine:
    """Vertex AI Gemini multimodal backend."""

    name = "gemini"

    def __init__(self, config: VisionConfig, model: Any | None = None) -> None:
        self._config = config
        self._model = model

    def _ensure_model(self) -> Any:
        if self._model is not None:
            return self._model
        if not self._config.project_id:
            raise EngineUnavailable("VERTEX_PROJECT_ID is not configured")
        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(project=self._config.project_id, location=self._config.location)
            self._model = GenerativeModel(self._config.gemini_model)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ENGINE_INITIALIZATION_FAILED,
                message=str(exc),
                suppressed=False,
                details={"engine": self.name},
            )
            raise EngineUnavailable(f"Gemini initialization failed: {exc}") from exc
        return self._model

    async def extract(self, image: PreparedImage, instruction: str) -> EngineOutput:
        model = self._ensure_model()
        try:
            from vertexai.generative_models import GenerationConfig, Part

            response = await model.generate_content_async(
                [Part.from_data(data=image.data, mime_type=image.mime_type), instruction],
                generation_config=GenerationConfig(
                    response_mime_type="application/json",
                    temperature=self._config.temperature,
                    max_output_tokens=self._config.max_tokens,
                ),
            )
        except Exception as exc:
            raise EngineUnavailable(f"Gemini request failed: {exc}") from exc

        try:
            text = response.text or ""
        except ValueError:
            # Blocked or empty candidates: nothing readable came back.
            text = ""
        return render_engine_response(text)


class OpenAIVisionEngine:
    """OpenAI chat-completions backend with an image_url content part."""

    name = "openai"

    def __init__(self, config: VisionConfig, client: AsyncOpenAI | None = None) -> None:
        self._config = config
        self._client = client

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        if not self._config.openai_api_key:
            raise EngineUnavailable("OPENAI_API_KEY is not configured")
        self._client = AsyncOpenAI(
            api_key=self._config.openai_api_key,
            base_url=self._config.openai_base_url,
            timeout=self._config.timeout_s,
            max_retries=0,
        )
        return self._client

    async def extract(self, image: PreparedImage, instruction: str) -> EngineOutput:
        client = self._ensure_client()
        encoded = base64.b64encode(image.data).decode("ascii")
        try:
            response = await client.chat.completions.create(
                model=self._config.openai_model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": instruction},
                            {
                                "type": "image_url",
                                "image_url": {
                                    "url": f"data:{image.mime_type};base64,{encoded}",
                                    "detail": "high",
                                },
                            },
                        ],
                    }
                ],
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise EngineUnavailable(f"OpenAI request failed: {exc}") from exc

        if not response.choices:
            return EngineOutput(text="")
        return render_engine_response(response.choices[0].message.content or "")


class TesseractEngine:
    """Local Tesseract OCR. The instruction is ignored; OCR has no prompt."""

    name = "tesseract"

    def __init__(self, config: VisionConfig) -> None:
        self._config = config

    def _ocr(self, data: bytes) -> str:
        if self._config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self._config.tesseract_cmd
        with Image.open(io.BytesIO(data)) as image:
            return pytesseract.image_to_string(image, config="--psm 6") or ""

    async def extract(self, image: PreparedImage, instruction: str) -> EngineOutput:
        try:
            text = await asyncio.to_thread(self._ocr, image.data)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as exc:
            raise EngineUnavailable(f"Tesseract OCR failed: {exc}") from exc
        return EngineOutput(text=text.strip())


def build_engine(config: VisionConfig) -> VisionEngine:
    """Construct the configured backend. SDK clients are created lazily on first use."""
    if config.backend == "gemini":
        return GeminiVisionEngine(config)
    if config.backend == "tesseract":
        return TesseractEngine(config)
    return OpenAIVisionEngine(config)
