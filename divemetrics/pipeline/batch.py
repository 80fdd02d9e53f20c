"""Batch Processor: many images, bounded concurrency, retries and cancellation.

Lifecycle of a batch:
1. Ingest every image (engine calls bounded by a semaphore, transient
   failures retried with exponential backoff and jitter).
2. Infer the batch date order from all raw texts that came back.
3. Normalize and validate each extraction with that shared context.

Images share no mutable state; a failure in one never affects another.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from divemetrics.config.settings import BatchConfig, RetryConfig
from divemetrics.ingestion.errors import EngineUnavailable, UnsupportedImageFormat
from divemetrics.normalization.normalizer import BatchContext
from divemetrics.normalization.rules import DateOrder, infer_date_order
from divemetrics.pipeline.analyzer import DiveImageAnalyzer
from divemetrics.pipeline.models import RawExtraction, ValidatedDiveMetricRecord
from divemetrics.signals.emitter import SignalEmitter
from divemetrics.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchItem:
    image: bytes | str
    prompt_hint: str | None = None
    source_image_id: str | None = None


class ItemStatus(str, Enum):
    ANALYZED = "analyzed"
    FAILED = "failed"
    SKIPPED = "skipped"


class BatchItemResult(BaseModel):
    index: int
    status: ItemStatus
    source_image_id: str | None = None
    record: ValidatedDiveMetricRecord | None = None
    error: str | None = None
    attempts: int = 0

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class BatchResult(BaseModel):
    batch_id: str
    items: list[BatchItemResult]
    date_order: DateOrder | None = None
    cancelled: bool = False
    signal_count: int = 0

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @property
    def records(self) -> list[ValidatedDiveMetricRecord]:
        return [item.record for item in self.items if item.record is not None]

    @property
    def failed(self) -> list[BatchItemResult]:
        return [item for item in self.items if item.status == ItemStatus.FAILED]


class CancellationToken:
    """Cooperative cancellation: checked before each dispatch and each retry."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _Ingested:
    index: int
    status: ItemStatus
    source_image_id: str | None
    raw: RawExtraction | None = None
    error: str | None = None
    attempts: int = 0


class BatchProcessor:
    """Runs DiveImageAnalyzer over a batch of images."""

    def __init__(
        self,
        analyzer: DiveImageAnalyzer,
        batch_config: BatchConfig | None = None,
        retry_config: RetryConfig | None = None,
        ledger_dir: Path | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._analyzer = analyzer
        self._batch = batch_config or BatchConfig()
        self._retry = retry_config or RetryConfig()
        self._ledger_dir = ledger_dir
        self._sleep = sleep

    # --- Retry Logic ---

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (1-based)."""
        base = self._retry.backoff_base_ms / 1000.0
        max_delay = self._retry.backoff_max_ms / 1000.0
        delay = min(base * (2 ** (attempt - 1)), max_delay)
        if self._retry.jitter:
            delay += random.uniform(0, base)
        return delay

    # --- Main Run ---

    async def run(
        self,
        items: Sequence[BatchItem],
        cancel_token: CancellationToken | None = None,
        batch_id: str | None = None,
        date_order: DateOrder | None = None,
        signals: SignalEmitter | None = None,
    ) -> BatchResult:
        """Analyze `items` and return one result per item, in input order.

        A supplied `date_order` overrides the order inferred from the batch.
        """
        if len(items) > self._batch.max_batch_size:
            raise ValueError(
                f"Batch of {len(items)} images exceeds the limit of {self._batch.max_batch_size}"
            )

        batch_id = batch_id or f"batch_{uuid.uuid4().hex[:12]}"
        token = cancel_token or CancellationToken()
        if signals is None:
            signals = SignalEmitter.for_batch(batch_id, self._ledger_dir)

        await signals.emit_batch_started(len(items), self._batch.max_concurrency)

        semaphore = asyncio.Semaphore(self._batch.max_concurrency)
        ingested = await asyncio.gather(
            *(
                self._ingest_one(index, item, semaphore, token, signals)
                for index, item in enumerate(items)
            )
        )

        if date_order is None:
            date_order = infer_date_order(
                entry.raw.raw_text for entry in ingested if entry.raw is not None
            )
        context = BatchContext(date_order=date_order)

        results: list[BatchItemResult] = []
        for entry in ingested:
            record = None
            if entry.raw is not None:
                record = self._analyzer.finish(entry.raw, context)
                await signals.emit_image_analyzed(entry.index, record)
            results.append(
                BatchItemResult(
                    index=entry.index,
                    status=entry.status,
                    source_image_id=entry.source_image_id,
                    record=record,
                    error=entry.error,
                    attempts=entry.attempts,
                )
            )

        skipped = sum(1 for r in results if r.status == ItemStatus.SKIPPED)
        if token.cancelled:
            await signals.emit_batch_cancelled(skipped)

        analyzed = sum(1 for r in results if r.status == ItemStatus.ANALYZED)
        await signals.emit_batch_complete(
            analyzed, len(results) - analyzed - skipped, skipped, date_order
        )
        logger.info(
            "batch_complete",
            extra={"batch_id": batch_id, "analyzed": analyzed, "total": len(results)},
        )

        return BatchResult(
            batch_id=batch_id,
            items=results,
            date_order=date_order,
            cancelled=token.cancelled,
            signal_count=len(signals.signals),
        )

    async def _ingest_one(
        self,
        index: int,
        item: BatchItem,
        semaphore: asyncio.Semaphore,
        token: CancellationToken,
        signals: SignalEmitter,
    ) -> _Ingested:
        async with semaphore:
            if token.cancelled:
                return _Ingested(index, ItemStatus.SKIPPED, item.source_image_id)

            await signals.emit_image_dispatched(index, item.source_image_id)
            attempts = 0
            while True:
                attempts += 1
                try:
                    raw = await self._analyzer.ingest(
                        item.image, item.prompt_hint, item.source_image_id
                    )
                    return _Ingested(
                        index, ItemStatus.ANALYZED, raw.source_image_id, raw=raw, attempts=attempts
                    )
                except UnsupportedImageFormat as exc:
                    return await self._fail(index, item, str(exc), attempts, signals)
                except EngineUnavailable as exc:
                    retries_used = attempts - 1
                    if retries_used >= self._retry.max_retries or token.cancelled:
                        return await self._fail(index, item, str(exc), attempts, signals)
                    delay = self.backoff_delay(attempts)
                    await signals.emit_retry_attempt(
                        index, attempts, self._retry.max_retries, str(exc), delay
                    )
                    await self._sleep(delay)
                    # The batch may have been cancelled while this image waited.
                    if token.cancelled:
                        return await self._fail(
                            index, item, f"batch cancelled before retry: {exc}", attempts, signals
                        )

    async def _fail(
        self,
        index: int,
        item: BatchItem,
        reason: str,
        attempts: int,
        signals: SignalEmitter,
    ) -> _Ingested:
        emit_structured_error(
            logger,
            code=ErrorCode.BATCH_IMAGE_FAILED,
            message=reason,
            suppressed=True,
            source_image_id=item.source_image_id,
            batch_id=signals.batch_id,
            details={"index": index, "attempts": attempts},
        )
        await signals.emit_image_failed(index, item.source_image_id, reason, attempts)
        return _Ingested(
            index, ItemStatus.FAILED, item.source_image_id, error=reason, attempts=attempts
        )
