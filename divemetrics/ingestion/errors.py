"""Ingestion failure taxonomy.

Only engine and image problems are exceptions. Text the engine returns but
nobody can parse is data, not an error.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for failures turning an image into raw text."""


class EngineUnavailable(IngestionError):
    """The OCR/vision backend could not be reached (network, auth, timeout). Retryable."""


class UnsupportedImageFormat(IngestionError):
    """The payload is not an accepted image. Never retried."""
