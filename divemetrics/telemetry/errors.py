"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    ENGINE_INITIALIZATION_FAILED = "ENGINE_INITIALIZATION_FAILED"
    ENGINE_UNAVAILABLE = "ENGINE_UNAVAILABLE"
    ENGINE_TIMEOUT = "ENGINE_TIMEOUT"
    UNSUPPORTED_IMAGE = "UNSUPPORTED_IMAGE"
    IMAGE_FETCH_FAILED = "IMAGE_FETCH_FAILED"
    BATCH_IMAGE_FAILED = "BATCH_IMAGE_FAILED"
    STORE_WRITE_FAILED = "STORE_WRITE_FAILED"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    source_image_id: str | None = None,
    batch_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "divemetrics_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "source_image_id": source_image_id,
            "batch_id": batch_id,
            "details": details or {},
        },
    )
