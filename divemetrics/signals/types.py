"""Signal type definitions for batch analysis observability."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted while analyzing a batch of images."""

    BATCH_STARTED = "BATCH_STARTED"
    IMAGE_DISPATCHED = "IMAGE_DISPATCHED"
    RETRY_ATTEMPT = "RETRY_ATTEMPT"
    IMAGE_ANALYZED = "IMAGE_ANALYZED"
    IMAGE_FAILED = "IMAGE_FAILED"
    BATCH_CANCELLED = "BATCH_CANCELLED"
    BATCH_COMPLETE = "BATCH_COMPLETE"


class Signal(BaseModel):
    """An immutable signal emitted during a batch.

    Signals are append-only and cannot be modified after emission.
    """

    sequence: int = Field(description="Monotonic sequence number within the batch")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    batch_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
