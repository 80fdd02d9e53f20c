"""Signal emitter for batch runs.

One emitter per batch. Each batch gets its own ledger file under the ledger
directory (``<ledger_dir>/<batch_id>/signals.jsonl``), and every image event
has a typed helper so payload keys stay the same across producers and
readers of the ledger.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from divemetrics.normalization.rules import DateOrder
from divemetrics.pipeline.models import ValidatedDiveMetricRecord
from divemetrics.signals.types import Signal, SignalType
from divemetrics.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

LEDGER_FILENAME = "signals.jsonl"

_BATCH_ID_RX = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def ledger_path_for(ledger_dir: Path, batch_id: str) -> Path:
    """Ledger file of one batch. The batch id becomes a directory name, so it is checked."""
    if not _BATCH_ID_RX.match(batch_id):
        raise ValueError(f"Invalid batch id for a ledger path: {batch_id!r}")
    return ledger_dir / batch_id / LEDGER_FILENAME


class SignalEmitter:
    """Emits, persists, and broadcasts the signals of a single batch.

    Sequence numbers are monotonic and assigned under a lock together with
    the ledger append, so the file order always matches the sequence.
    """

    def __init__(self, batch_id: str, ledger_path: Path | None = None) -> None:
        self._batch_id = batch_id
        self._sequence = 0
        self._ledger_path = ledger_path
        self._subscribers: list[Callable[[Signal], Any]] = []
        self._signals: list[Signal] = []
        self._lock = asyncio.Lock()

        if self._ledger_path:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def for_batch(cls, batch_id: str, ledger_dir: Path | None = None) -> SignalEmitter:
        """Emitter for `batch_id`, writing to its own ledger when `ledger_dir` is set."""
        ledger_path = ledger_path_for(ledger_dir, batch_id) if ledger_dir else None
        return cls(batch_id=batch_id, ledger_path=ledger_path)

    @property
    def batch_id(self) -> str:
        return self._batch_id

    @property
    def ledger_path(self) -> Path | None:
        return self._ledger_path

    @property
    def signals(self) -> list[Signal]:
        """Return all emitted signals (read-only copy)."""
        return list(self._signals)

    def of_type(self, signal_type: SignalType) -> list[Signal]:
        return [s for s in self._signals if s.signal_type == signal_type]

    def subscribe(self, callback: Callable[[Signal], Any]) -> None:
        """Register a subscriber. Sync callables and coroutine functions both work."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers = [s for s in self._subscribers if s is not callback]

    async def emit(self, signal_type: SignalType, payload: dict[str, Any] | None = None) -> Signal:
        """Emit a signal. This is the only way to create signals."""
        async with self._lock:
            self._sequence += 1
            signal = Signal(
                sequence=self._sequence,
                signal_type=signal_type,
                timestamp=datetime.now(timezone.utc),
                batch_id=self._batch_id,
                payload=payload or {},
            )
            self._signals.append(signal)
            if self._ledger_path:
                self._append_to_ledger(signal)

        await self._broadcast(signal)
        return signal

    # --- Batch events ---

    async def emit_batch_started(self, total_images: int, max_concurrency: int) -> Signal:
        return await self.emit(
            SignalType.BATCH_STARTED,
            {"total_images": total_images, "max_concurrency": max_concurrency},
        )

    async def emit_image_dispatched(self, index: int, source_image_id: str | None) -> Signal:
        return await self.emit(
            SignalType.IMAGE_DISPATCHED,
            {"index": index, "source_image_id": source_image_id},
        )

    async def emit_retry_attempt(
        self,
        index: int,
        attempt_number: int,
        max_attempts: int,
        reason: str,
        delay_seconds: float,
    ) -> Signal:
        return await self.emit(
            SignalType.RETRY_ATTEMPT,
            {
                "index": index,
                "attempt_number": attempt_number,
                "max_attempts": max_attempts,
                "reason": reason,
                "delay_seconds": round(delay_seconds, 3),
            },
        )

    async def emit_image_analyzed(self, index: int, record: ValidatedDiveMetricRecord) -> Signal:
        return await self.emit(
            SignalType.IMAGE_ANALYZED,
            {
                "index": index,
                "source_image_id": record.source_image_id,
                "record_id": record.record_id,
                "is_usable": record.is_usable,
                "warnings": len(record.validation_warnings),
            },
        )

    async def emit_image_failed(
        self, index: int, source_image_id: str | None, reason: str, attempts: int
    ) -> Signal:
        return await self.emit(
            SignalType.IMAGE_FAILED,
            {
                "index": index,
                "source_image_id": source_image_id,
                "reason": reason,
                "attempts": attempts,
            },
        )

    async def emit_batch_cancelled(self, skipped_images: int) -> Signal:
        return await self.emit(SignalType.BATCH_CANCELLED, {"skipped_images": skipped_images})

    async def emit_batch_complete(
        self, analyzed: int, failed: int, skipped: int, date_order: DateOrder | None
    ) -> Signal:
        return await self.emit(
            SignalType.BATCH_COMPLETE,
            {
                "analyzed": analyzed,
                "failed": failed,
                "skipped": skipped,
                "date_order": date_order.value if date_order else None,
            },
        )

    # --- Ledger and delivery ---

    def _append_to_ledger(self, signal: Signal) -> None:
        with open(self._ledger_path, "a", encoding="utf-8") as f:
            f.write(signal.model_dump_json() + "\n")

    async def _broadcast(self, signal: Signal) -> None:
        for subscriber in self._subscribers:
            try:
                result = subscriber(signal)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                # A failing subscriber must not stop the batch.
                emit_structured_error(
                    logger,
                    code=ErrorCode.SIGNAL_SUBSCRIBER_FAILURE,
                    message=str(exc),
                    suppressed=True,
                    batch_id=self._batch_id,
                    details={"signal_type": signal.signal_type.value},
                )

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[Signal]:
        """Load all signals from a JSONL ledger file."""
        signals = []
        if ledger_path.exists():
            with open(ledger_path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        signals.append(Signal.model_validate_json(line))
        return signals

    @classmethod
    def load_batch(cls, ledger_dir: Path, batch_id: str) -> list[Signal]:
        """Replay the ledger of one batch; empty when it never ran."""
        return cls.load_ledger(ledger_path_for(ledger_dir, batch_id))
