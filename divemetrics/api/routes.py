"""REST API routes for divemetrics.

Provides endpoints for:
- Analyzing one dive computer image (upload, base64, remote URL)
- Analyzing a batch of images
- Listing and correcting a diver's stored records
"""

from __future__ import annotations

import logging
from datetime import date

import httpx
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from divemetrics.api.validators import validate_image_url
from divemetrics.config.settings import DiveMetricsConfig
from divemetrics.ingestion.errors import EngineUnavailable, UnsupportedImageFormat
from divemetrics.normalization.normalizer import BatchContext
from divemetrics.normalization.rules import DateOrder
from divemetrics.pipeline.analyzer import DiveImageAnalyzer
from divemetrics.pipeline.batch import BatchItem, BatchProcessor, BatchResult
from divemetrics.pipeline.models import ValidatedDiveMetricRecord
from divemetrics.pipeline.store import RecordStore, StoreError, validate_user_id
from divemetrics.telemetry.errors import ErrorCode, emit_structured_error
from divemetrics.validation.validator import correct_record

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Request Models ---


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeBase64Request(_CamelRequest):
    """Image as base64 or a data:image/...;base64, URL."""

    image_data: str
    prompt_hint: str | None = None
    user_id: str | None = None
    date_order: DateOrder | None = None


class AnalyzeURLRequest(_CamelRequest):
    image_url: str
    prompt_hint: str | None = None
    user_id: str | None = None
    date_order: DateOrder | None = None


class CorrectionRequest(_CamelRequest):
    """Fields a diver fixes by hand. Omitted fields keep their current value."""

    max_depth_meters: float | None = Field(default=None, ge=0)
    dive_time_seconds: int | None = Field(default=None, ge=0)
    water_temperature_celsius: float | None = None
    dive_date: date | None = None


# --- Dependencies ---


def get_config(request: Request) -> DiveMetricsConfig:
    return request.app.state.config


def get_analyzer(request: Request) -> DiveImageAnalyzer:
    return request.app.state.analyzer


def get_batch_processor(request: Request) -> BatchProcessor:
    return request.app.state.batch_processor


def get_store(request: Request) -> RecordStore | None:
    return request.app.state.store


def _require_store(store: RecordStore | None) -> RecordStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Record store is not configured")
    return store


def _check_user_id(user_id: str | None) -> None:
    if user_id is None:
        return
    try:
        validate_user_id(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _persist(store: RecordStore | None, record: ValidatedDiveMetricRecord, user_id: str | None) -> None:
    if user_id is None or store is None:
        return
    try:
        store.save(record, user_id)
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


async def _analyze(
    analyzer: DiveImageAnalyzer,
    image: bytes | str,
    prompt_hint: str | None,
    date_order: DateOrder | None,
) -> ValidatedDiveMetricRecord:
    try:
        return await analyzer.analyze_image(
            image, prompt_hint, context=BatchContext(date_order=date_order)
        )
    except UnsupportedImageFormat as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc
    except EngineUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


# --- Endpoints ---


@router.post("/analyze", response_model=ValidatedDiveMetricRecord)
async def analyze_upload(
    image: UploadFile = File(...),
    prompt_hint: str | None = Form(None),
    user_id: str | None = Form(None),
    date_order: DateOrder | None = Form(None),
    analyzer: DiveImageAnalyzer = Depends(get_analyzer),
    store: RecordStore | None = Depends(get_store),
) -> ValidatedDiveMetricRecord:
    """Analyze one uploaded dive computer photo."""
    _check_user_id(user_id)
    record = await _analyze(analyzer, await image.read(), prompt_hint, date_order)
    _persist(store, record, user_id)
    return record


@router.post("/analyze/base64", response_model=ValidatedDiveMetricRecord)
async def analyze_base64(
    request: AnalyzeBase64Request,
    analyzer: DiveImageAnalyzer = Depends(get_analyzer),
    store: RecordStore | None = Depends(get_store),
) -> ValidatedDiveMetricRecord:
    _check_user_id(request.user_id)
    record = await _analyze(analyzer, request.image_data, request.prompt_hint, request.date_order)
    _persist(store, record, request.user_id)
    return record


async def _fetch_image(http_request: Request, image_url: str, config: DiveMetricsConfig) -> bytes:
    """Download a remote image without following redirects, capped at the upload limit."""
    limit = config.images.max_bytes
    transport = http_request.app.state.http_transport
    try:
        async with httpx.AsyncClient(
            transport=transport,
            timeout=config.image_url_policy.fetch_timeout_s,
            follow_redirects=False,
        ) as client:
            async with client.stream("GET", image_url) as response:
                if response.status_code != 200:
                    raise HTTPException(
                        status_code=502,
                        detail=f"Image URL returned HTTP {response.status_code}",
                    )
                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > limit:
                        raise HTTPException(
                            status_code=415,
                            detail=f"image exceeds the limit of {limit} bytes",
                        )
                    chunks.append(chunk)
    except httpx.HTTPError as exc:
        emit_structured_error(
            logger,
            code=ErrorCode.IMAGE_FETCH_FAILED,
            message=str(exc),
            suppressed=False,
            details={"image_url": image_url},
        )
        raise HTTPException(status_code=502, detail="Could not fetch image URL") from exc
    return b"".join(chunks)


@router.post("/analyze/url", response_model=ValidatedDiveMetricRecord)
async def analyze_url(
    request: AnalyzeURLRequest,
    http_request: Request,
    config: DiveMetricsConfig = Depends(get_config),
    analyzer: DiveImageAnalyzer = Depends(get_analyzer),
    store: RecordStore | None = Depends(get_store),
) -> ValidatedDiveMetricRecord:
    """Fetch a remote image (SSRF-checked) and analyze it."""
    validate_image_url(request.image_url, config.image_url_policy)
    _check_user_id(request.user_id)
    data = await _fetch_image(http_request, request.image_url, config)
    record = await _analyze(analyzer, data, request.prompt_hint, request.date_order)
    _persist(store, record, request.user_id)
    return record


@router.post("/analyze/batch", response_model=BatchResult)
async def analyze_batch(
    images: list[UploadFile] = File(...),
    prompt_hint: str | None = Form(None),
    user_id: str | None = Form(None),
    date_order: DateOrder | None = Form(None),
    config: DiveMetricsConfig = Depends(get_config),
    processor: BatchProcessor = Depends(get_batch_processor),
    store: RecordStore | None = Depends(get_store),
) -> BatchResult:
    """Analyze several photos of one dive session together."""
    if len(images) > config.batch.max_batch_size:
        raise HTTPException(
            status_code=400,
            detail=f"At most {config.batch.max_batch_size} images per batch",
        )
    _check_user_id(user_id)

    items = [
        BatchItem(image=await upload.read(), prompt_hint=prompt_hint) for upload in images
    ]
    result = await processor.run(items, date_order=date_order)
    for record in result.records:
        _persist(store, record, user_id)
    return result


@router.get("/users/{user_id}/records", response_model=list[ValidatedDiveMetricRecord])
async def list_records(
    user_id: str, store: RecordStore | None = Depends(get_store)
) -> list[ValidatedDiveMetricRecord]:
    """Current records for a diver; superseded versions are hidden."""
    _check_user_id(user_id)
    return _require_store(store).load(user_id)


@router.post(
    "/users/{user_id}/records/{record_id}/corrections",
    response_model=ValidatedDiveMetricRecord,
)
async def correct_user_record(
    user_id: str,
    record_id: str,
    correction: CorrectionRequest,
    store: RecordStore | None = Depends(get_store),
) -> ValidatedDiveMetricRecord:
    """Save a corrected copy of a record; the original stays in the audit trail."""
    _check_user_id(user_id)
    store = _require_store(store)
    original = store.get(user_id, record_id)
    if original is None:
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")

    try:
        corrected = correct_record(original, **correction.model_dump(exclude_unset=True))
    except ValidationError as exc:
        detail = exc.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(status_code=422, detail=detail) from exc
    _persist(store, corrected, user_id)
    return corrected
